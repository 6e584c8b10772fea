"""
Tests for batik_api/rate_lim.py: limiter keys and login limit lookup.
"""

import hashlib

from batik_api.rate_lim import _limiter_key_func, login_limit


class TestLimiterKey:
    TOKEN = "3|plaintext-bearer-token"

    def test_bearer_token_is_hashed(self, app):
        with app.test_request_context(headers={"Authorization": f"Bearer {self.TOKEN}"}):
            key = _limiter_key_func()

        assert key == "token:" + hashlib.sha256(self.TOKEN.encode()).hexdigest()
        assert self.TOKEN not in key

    def test_x_authorization_uses_same_key(self, app):
        with app.test_request_context(headers={"Authorization": f"Bearer {self.TOKEN}"}):
            bearer_key = _limiter_key_func()
        with app.test_request_context(headers={"X-Authorization": self.TOKEN}):
            raw_key = _limiter_key_func()

        assert raw_key == bearer_key

    def test_anonymous_requests_use_address(self, app):
        with app.test_request_context(environ_base={"REMOTE_ADDR": "10.0.0.7"}):
            assert _limiter_key_func() == "10.0.0.7"


class TestLoginLimit:
    def test_default(self, app):
        with app.app_context():
            assert login_limit() == "20 per minute"

    def test_configured(self, app):
        app.config["LOGIN_RATE_LIMIT"] = "5 per minute"
        with app.app_context():
            assert login_limit() == "5 per minute"
