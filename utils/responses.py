from flask import jsonify

from services.errors import BookingError, PartialSuccess


def respond(result, error: BookingError = None, status: int = 200):
    """
    Turns a service (result, error) pair into a JSON response.
    PartialSuccess keeps the result and adds a warning (207).
    """
    if error is None:
        return jsonify(result), status
    if isinstance(error, PartialSuccess):
        return jsonify(result=result, warning=error.to_dict()), error.http_status

    body = error.to_dict()
    if result is not None:
        body["result"] = result
    return jsonify(body), error.http_status


def error_response(error: BookingError):
    return jsonify(error.to_dict()), error.http_status
