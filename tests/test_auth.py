from datetime import datetime, timedelta, timezone

import pytest
from jose import ExpiredSignatureError, JWTError, jwt

import auth


def _token(**claims) -> str:
    base = {
        "sub": "7",
        "email": "proctor@example.org",
        "role": auth.ROLE_EXAMINER,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    base.update(claims)
    return jwt.encode(base, auth.SECRET_KEY, algorithm=auth.ALGORITHM)


def test_password_rules():
    assert auth.password_problem("secret1") is None
    assert "at least 6" in auth.password_problem("abc")
    assert "at most 72 bytes" in auth.password_problem("é" * 40)


def test_password_round_trip_and_bad_hash():
    hashed = auth.hash_password("secret1")

    assert auth.verify_password("secret1", hashed)
    assert not auth.verify_password("secret2", hashed)
    assert not auth.verify_password("secret1", "not-a-bcrypt-hash")


def test_access_token_carries_examiner_identity():
    identity = auth.decode_token(auth.create_access_token(7, "proctor@example.org"))
    assert identity == auth.ExaminerIdentity(examiner_id=7, email="proctor@example.org")


def test_decode_rejects_other_roles_and_stale_tokens():
    with pytest.raises(JWTError):
        auth.decode_token(_token(role="student"))
    with pytest.raises(JWTError):
        auth.decode_token(_token(sub="not-a-number"))
    with pytest.raises(ExpiredSignatureError):
        auth.decode_token(_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)))


def test_expired_token_is_rejected_by_the_api(client):
    stale = _token(exp=datetime.now(timezone.utc) - timedelta(minutes=1))

    res = client.get("/api/exams", headers={"Authorization": f"Bearer {stale}"})

    assert res.status_code == 401
    assert res.json()["detail"] == "Session expired, please sign in again"
