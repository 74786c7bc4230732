from flask import Flask, request, jsonify
from flask_cors import CORS
from studio_billing import BillingProcessor
from studio_billing.errors import NotFoundError, StateConflictError
from studio_billing import settings
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the quote page and the back office call the API)
CORS(app)

# Initialize the billing processor
processor = BillingProcessor()


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Studio Billing API",
        "version": "1.0",
        "environment": settings.ENVIRONMENT,
        "endpoints": {
            "quote_totals": "/quotes/totals [POST]",
            "quote_balance": "/quotes/balance [POST]",
            "send_quote": "/quotes/send [POST]",
            "view_quote": "/quotes/view [POST]",
            "approve_quote": "/quotes/approve [POST]",
            "invoice_from_quote": "/invoices/from_quote [POST]",
            "standalone_invoice": "/invoices/standalone [POST]",
            "record_payment": "/invoices/payment [POST]",
            "late_fee": "/invoices/late_fee [POST]",
            "invoice_status": "/invoices/status [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


def run_operation(name, operation):
    """
    Run one processor operation on the JSON body and map engine errors
    onto HTTP statuses.
    """
    try:
        input_data = request.get_json(force=True, silent=True)

        if not input_data:
            return jsonify({
                "error": "No input data provided",
                "status": "failed"
            }), 400

        logger.info(f"Processing {name}")
        result = operation(input_data)
        logger.info(f"{name} processed successfully")

        return jsonify(result), 200

    except StateConflictError as e:
        logger.warning(f"Conflict in {name}: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "conflict"
        }), 409

    except NotFoundError as e:
        logger.warning(f"Not found in {name}: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "not_found"
        }), 404

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine (missing fields, invalid types, etc.)
        logger.error(f"Validation error in {name}: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "validation_failed"
        }), 400

    except Exception as e:
        # Unexpected errors - log details but return a generic message
        logger.error(f"Processing error in {name}: {str(e)}", exc_info=True)
        return jsonify({
            "error": "An unexpected error occurred during processing",
            "status": "failed"
        }), 500


@app.route("/quotes/totals", methods=["POST"])
def quote_totals():
    return run_operation("quote totals", processor.quote_totals_from_dict)


@app.route("/quotes/balance", methods=["POST"])
def quote_balance():
    return run_operation("quote balance", processor.balance_from_dict)


@app.route("/quotes/send", methods=["POST"])
def send_quote():
    return run_operation("send quote", processor.send_from_dict)


@app.route("/quotes/view", methods=["POST"])
def view_quote():
    return run_operation("view quote", processor.view_from_dict)


@app.route("/quotes/approve", methods=["POST"])
def approve_quote():
    return run_operation("approve quote", processor.approve_from_dict)


@app.route("/invoices/from_quote", methods=["POST"])
def invoice_from_quote():
    return run_operation("invoice from quote", processor.create_invoice_from_dict)


@app.route("/invoices/standalone", methods=["POST"])
def standalone_invoice():
    return run_operation("standalone invoice", processor.create_standalone_from_dict)


@app.route("/invoices/payment", methods=["POST"])
def record_payment():
    return run_operation("record payment", processor.record_payment_from_dict)


@app.route("/invoices/late_fee", methods=["POST"])
def late_fee():
    return run_operation("late fee", processor.late_fee_from_dict)


@app.route("/invoices/status", methods=["POST"])
def invoice_status():
    return run_operation("invoice status", processor.invoice_status_from_dict)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.PORT, debug=False)
