"""Tests for pull request creation against a mocked GitHub API."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from repo_replace_pr import ApiRejected, NetworkFailed, create_pull_request


def _response(status_code, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


def test_create_pull_request_posts_expected_payload() -> None:
    created = _response(201, {"html_url": "https://github.com/acme/svc/pull/7"})

    with patch("repo_replace_pr.requests.post", return_value=created) as post:
        pr_url = create_pull_request("acme/svc", "feature", "main", "Title", "Body", "tok123")

    assert pr_url == "https://github.com/acme/svc/pull/7"
    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "https://api.github.com/repos/acme/svc/pulls"
    assert kwargs["headers"]["Authorization"] == "Bearer tok123"
    assert kwargs["headers"]["User-Agent"]
    assert kwargs["json"] == {"title": "Title", "body": "Body", "head": "feature", "base": "main"}
    assert kwargs["timeout"] == 30


def test_create_pull_request_uses_custom_api_url() -> None:
    with patch("repo_replace_pr.requests.post", return_value=_response(200, {})) as post:
        pr_url = create_pull_request(
            "acme/svc", "feature", "main", "T", "B", "tok", api_url="https://ghe.example.com/api/v3/"
        )

    assert pr_url == ""
    assert post.call_args[0][0] == "https://ghe.example.com/api/v3/repos/acme/svc/pulls"


def test_create_pull_request_surfaces_rejection_body() -> None:
    body = '{"message":"Validation Failed","errors":[{"message":"A pull request already exists"}]}'

    with patch("repo_replace_pr.requests.post", return_value=_response(422, text=body)):
        with pytest.raises(ApiRejected) as excinfo:
            create_pull_request("acme/svc", "feature", "main", "T", "B", "tok")

    assert excinfo.value.status_code == 422
    assert excinfo.value.body == body
    assert "A pull request already exists" in str(excinfo.value)


def test_create_pull_request_treats_redirect_as_failure() -> None:
    with patch("repo_replace_pr.requests.post", return_value=_response(301, text="moved")):
        with pytest.raises(ApiRejected):
            create_pull_request("acme/svc", "feature", "main", "T", "B", "tok")


def test_create_pull_request_network_failure() -> None:
    with patch("repo_replace_pr.requests.post", side_effect=requests.ConnectionError("refused")) as post:
        with pytest.raises(NetworkFailed, match="refused"):
            create_pull_request("acme/svc", "feature", "main", "T", "B", "tok")

    assert post.call_count == 1
