"""Pruebas del parseo del token bearer."""

from jose import jwt

from courseplayer.core.security import get_viewer_id, parse_bearer


class TestParseBearer:
    def test_valid_header(self):
        assert parse_bearer("Bearer abc.def") == "abc.def"
        assert parse_bearer("bearer abc.def") == "abc.def"

    def test_invalid_headers(self):
        assert parse_bearer(None) is None
        assert parse_bearer("") is None
        assert parse_bearer("Basic dXNlcg==") is None
        assert parse_bearer("Bearer ") is None


class TestViewerId:
    def test_reads_user_id_claims(self):
        assert get_viewer_id(jwt.encode({"userId": "u1"}, "s", algorithm="HS256")) == "u1"
        assert get_viewer_id(jwt.encode({"_id": "u2"}, "s", algorithm="HS256")) == "u2"
        assert get_viewer_id(jwt.encode({"sub": "u3"}, "s", algorithm="HS256")) == "u3"

    def test_malformed_token(self):
        assert get_viewer_id("not-a-jwt") is None
        assert get_viewer_id(None) is None
