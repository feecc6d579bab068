from typing import Any, Optional


def send_response(message: str, data: Any = None, meta: Optional[dict] = None) -> dict:
    """Success envelope shared by every route."""
    body = {
        "success": True,
        "message": message,
        "data": data,
    }
    if meta is not None:
        body["meta"] = meta
    return body


def query_params(request) -> dict:
    """
    Flatten a request's query string into a parameter bag.
    Repeated keys become lists, single keys stay scalar.
    """
    params: dict = {}
    for key, value in request.query_params.multi_items():
        if key in params:
            existing = params[key]
            params[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params
