import json
from unittest.mock import Mock

TEST_CLIENT_EMAIL = "svc@test.iam.gserviceaccount.com"


def make_response(body=None, status_code=200, text=None):
    """Stand-in for requests.Response with just what the client reads."""
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
        response.text = text or ""
    else:
        response.json.return_value = body
        response.text = text if text is not None else json.dumps(body)
    return response
