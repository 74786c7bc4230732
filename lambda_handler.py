"""
AWS Lambda handler for the Studio Billing API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging

from studio_billing import BillingProcessor
from studio_billing.errors import NotFoundError, StateConflictError
from studio_billing.settings import ENVIRONMENT

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Initialize processor (reused across warm invocations)
processor = BillingProcessor()

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}

# POST routes and the processor operation behind each
OPERATIONS = {
    "/quotes/totals": processor.quote_totals_from_dict,
    "/quotes/balance": processor.balance_from_dict,
    "/quotes/send": processor.send_from_dict,
    "/quotes/view": processor.view_from_dict,
    "/quotes/approve": processor.approve_from_dict,
    "/invoices/from_quote": processor.create_invoice_from_dict,
    "/invoices/standalone": processor.create_standalone_from_dict,
    "/invoices/payment": processor.record_payment_from_dict,
    "/invoices/late_fee": processor.late_fee_from_dict,
    "/invoices/status": processor.invoice_status_from_dict,
}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for:
    - GET /health
    - GET /api
    - POST /quotes/* and /invoices/* (see OPERATIONS)
    - OPTIONS (CORS preflight)
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    elif path in OPERATIONS and http_method == "POST":
        return handle_operation(event, path)
    else:
        return respond(404, {"error": "Not found", "path": path})


def respond(status_code, payload):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(payload)}


def handle_health():
    """Health check endpoint."""
    return respond(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return respond(
        200,
        {
            "status": "ok",
            "message": "Studio Billing API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {**{route: "[POST]" for route in OPERATIONS}, "/health": "[GET]"},
        },
    )


def parse_body(event):
    """Return the JSON body as a dict, or None when it is empty."""
    body = event.get("body", "")
    if not isinstance(body, str):
        return body
    if not body:
        return None
    # Handle base64 encoded body (API Gateway)
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    return json.loads(body)


def handle_operation(event, path):
    """Run the billing operation registered for the path."""
    try:
        input_data = parse_body(event)
        if not input_data:
            return respond(400, {"error": "No input data provided", "status": "failed"})

        logger.info(f"Processing {path}")
        result = OPERATIONS[path](input_data)
        logger.info(f"{path} processed successfully")

        return respond(200, result)

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return respond(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except StateConflictError as e:
        logger.warning(f"Conflict on {path}: {str(e)}")
        return respond(409, {"error": str(e), "status": "conflict"})

    except NotFoundError as e:
        logger.warning(f"Not found on {path}: {str(e)}")
        return respond(404, {"error": str(e), "status": "not_found"})

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return respond(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return respond(500, {"error": "An unexpected error occurred during processing", "status": "failed"})
