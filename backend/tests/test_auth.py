from deeptech.core.security import decode_token
from deeptech.models import VerificationCode

PASSWORD = "Secret123!"


def test_create_dtuser_starts_unverified(client, notifier):
    resp = client.post("/auth/createDTuser", json={
        "fullName": "Ada Lovelace",
        "email": "  Ada@X.com ",
        "domains": ["Text Annotation", "Audio"],
        "consent": True,
    })

    assert resp.status_code == 201
    body = resp.json()
    user = body["data"]["user"]
    assert body["success"] is True
    assert body["data"]["emailSent"] is True
    assert "warning" not in body["data"]
    assert user["email"] == "ada@x.com"
    assert user["isEmailVerified"] is False
    assert user["hasSetPassword"] is False
    assert user["state"] == "created"
    assert user["annotatorStatus"] == "pending"
    assert user["domains"] == ["Text Annotation", "Audio"]
    assert "passwordHash" not in user

    [(recipient, subject, text)] = notifier.sent
    assert recipient == "ada@x.com"
    assert f"/auth/verifyDTusermail/{user['id']}" in text
    assert notifier.codes["ada@x.com"] in text


def test_create_dtuser_duplicate_email_is_rejected(client, make_dtuser):
    make_dtuser("a@x.com")

    resp = client.post("/auth/createDTuser", json={"fullName": "Other", "email": "A@X.COM"})

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "User already exists with this email"}


def test_create_dtuser_reports_failed_email(client, notifier):
    notifier.fail = True

    resp = client.post("/auth/createDTuser", json={"fullName": "Ada", "email": "a@x.com"})

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["emailSent"] is False
    assert "warning" in data


def test_malformed_body_returns_validation_envelope(client):
    resp = client.post("/auth/createDTuser", json={"email": "not-an-email"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert "email" in body["errors"]
    assert "fullName" in body["errors"]


def test_verify_link_is_idempotent(client, make_dtuser):
    user = make_dtuser()

    first = client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "A@x.com"})
    second = client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "a@x.com"})

    assert first.status_code == 200
    assert first.json()["alreadyVerified"] is False
    assert first.json()["data"]["user"]["state"] == "email_verified"
    assert second.status_code == 200
    assert second.json()["alreadyVerified"] is True
    assert second.json()["message"] == "Email already verified"


def test_verify_link_rejects_wrong_email_and_unknown_id(client, make_dtuser):
    user = make_dtuser()

    wrong = client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "b@x.com"})
    missing = client.get("/auth/verifyDTusermail/does-not-exist", params={"email": "a@x.com"})

    assert wrong.status_code == 400
    assert missing.status_code == 404
    assert missing.json()["success"] is False


def test_full_dtuser_lifecycle(client, make_dtuser, login):
    user = make_dtuser("a@x.com")
    client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "a@x.com"})

    setup = client.post("/auth/setupPassword", json={
        "userId": user["id"], "email": "a@x.com", "password": "P1-secret", "confirmPassword": "P1-secret",
    })
    assert setup.status_code == 200
    assert setup.json()["data"]["user"]["state"] == "password_set"

    ok = login("a@x.com", "P1-secret")
    assert ok.status_code == 200
    body = ok.json()
    assert body["success"] is True
    assert body["token"] == body["_usrinfo"]["data"]
    assert body["user"]["id"] == user["id"]
    claims = decode_token(body["token"])
    assert claims["sub"] == user["id"]
    assert claims["email"] == "a@x.com"
    assert claims["isAdmin"] is False

    bad = login("a@x.com", "wrong-password")
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid credentials"

    again = client.post("/auth/setupPassword", json={
        "userId": user["id"], "email": "a@x.com", "password": "P2-secret", "confirmPassword": "P2-secret",
    })
    assert again.status_code == 400
    assert again.json()["message"] == "Password has already been set for this account"


def test_unknown_email_and_wrong_password_look_the_same(active_dtuser, login):
    active_dtuser("a@x.com")

    unknown = login("nobody@x.com", PASSWORD)
    wrong = login("a@x.com", "not-the-password")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


def test_login_unverified_resends_code(client, db, make_dtuser, notifier, login):
    user = make_dtuser("a@x.com")

    resp = login("a@x.com", PASSWORD)

    assert resp.status_code == 401
    assert resp.json()["emailSent"] is True
    assert "otpRequired" not in resp.json()
    assert len(notifier.sent_to("a@x.com")) == 2
    codes = db.query(VerificationCode).filter(VerificationCode.account_id == user["id"]).all()
    open_codes = [c for c in codes if c.invalidated_at is None and c.consumed_at is None]
    assert len(codes) == 2
    assert [c.code for c in open_codes] == [notifier.codes["a@x.com"]]


def test_login_before_password_setup_points_to_setup(client, make_dtuser, login):
    user = make_dtuser("a@x.com")
    client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "a@x.com"})

    resp = login("a@x.com", PASSWORD)

    assert resp.status_code == 401
    body = resp.json()
    assert body["requiresPasswordSetup"] is True
    assert body["userId"] == user["id"]


def test_setup_password_guards(client, make_dtuser):
    user = make_dtuser("a@x.com")
    payload = {"userId": user["id"], "email": "a@x.com", "password": PASSWORD, "confirmPassword": PASSWORD}

    unverified = client.post("/auth/setupPassword", json=payload)
    assert unverified.status_code == 401

    client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "a@x.com"})
    mismatch = client.post("/auth/setupPassword", json={**payload, "confirmPassword": "Different1!"})
    assert mismatch.status_code == 400
    assert mismatch.json()["message"] == "Passwords do not match"

    short = client.post("/auth/setupPassword", json={**payload, "password": "short", "confirmPassword": "short"})
    assert short.status_code == 400
    assert "password" in short.json()["errors"]


def test_verify_otp_for_dtuser(client, make_dtuser, notifier):
    make_dtuser("a@x.com")
    code = notifier.codes["a@x.com"]

    first = client.post("/auth/verify-otp", json={"email": "a@x.com", "verificationCode": code})
    second = client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": code})

    assert first.status_code == 200
    assert first.json()["alreadyVerified"] is False
    assert second.status_code == 200
    assert second.json()["alreadyVerified"] is True


def test_verify_otp_requires_a_code(client, make_dtuser):
    make_dtuser("a@x.com")

    resp = client.post("/auth/verify-otp", json={"email": "a@x.com"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation error"


def test_resend_verification(client, make_dtuser, notifier):
    user = make_dtuser("a@x.com")

    missing = client.post("/auth/resendVerificationEmail", json={"email": "nobody@x.com"})
    assert missing.status_code == 404

    resent = client.post("/auth/resendVerificationEmail", json={"email": "a@x.com"})
    assert resent.status_code == 200
    assert resent.json()["emailSent"] is True
    assert len(notifier.sent_to("a@x.com")) == 2

    client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "a@x.com"})
    noop = client.post("/auth/resendVerificationEmail", json={"email": "a@x.com"})
    assert noop.status_code == 200
    assert noop.json()["alreadyVerified"] is True
    assert len(notifier.sent_to("a@x.com")) == 2


def test_change_password(client, active_dtuser, auth_header, login):
    active_dtuser("a@x.com")
    headers = auth_header("a@x.com")
    url = "/auth/dtUserResetPassword"

    no_token = client.patch(url, json={
        "oldPassword": PASSWORD, "newPassword": "NewSecret1!", "confirmNewPassword": "NewSecret1!",
    })
    assert no_token.status_code == 401

    wrong_old = client.patch(url, headers=headers, json={
        "oldPassword": "nope-nope", "newPassword": "NewSecret1!", "confirmNewPassword": "NewSecret1!",
    })
    assert wrong_old.status_code == 401

    mismatch = client.patch(url, headers=headers, json={
        "oldPassword": PASSWORD, "newPassword": "NewSecret1!", "confirmNewPassword": "NewSecret2!",
    })
    assert mismatch.status_code == 400

    same = client.patch(url, headers=headers, json={
        "oldPassword": PASSWORD, "newPassword": PASSWORD, "confirmNewPassword": PASSWORD,
    })
    assert same.status_code == 400
    assert same.json()["message"] == "New password must be different from the current password"

    ok = client.patch(url, headers=headers, json={
        "oldPassword": PASSWORD, "newPassword": "NewSecret1!", "confirmNewPassword": "NewSecret1!",
    })
    assert ok.status_code == 200
    assert ok.json()["emailSent"] is True
    assert login("a@x.com", "NewSecret1!").status_code == 200
    assert login("a@x.com", PASSWORD).status_code == 401


def test_me_requires_valid_token(client, active_dtuser, auth_header):
    user = active_dtuser("a@x.com")

    assert client.get("/auth/me").status_code == 401
    bad = client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "INVALID_TOKEN"

    resp = client.get("/auth/me", headers=auth_header("a@x.com"))
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["id"] == user["id"]


def test_forgot_password_flow(client, active_dtuser, notifier, login):
    active_dtuser("a@x.com")

    unknown = client.post("/auth/forgotPassword", json={"email": "nobody@x.com"})
    known = client.post("/auth/forgotPassword", json={"email": "a@x.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()

    token = notifier.reset_tokens["a@x.com"]
    check = client.get(f"/auth/verifyResetToken/{token}")
    assert check.status_code == 200
    assert check.json()["data"]["email"] == "a@x.com"

    reset = client.post("/auth/resetPassword", json={
        "token": token, "password": "Recovered1!", "confirmPassword": "Recovered1!",
    })
    assert reset.status_code == 200
    assert login("a@x.com", "Recovered1!").status_code == 200

    reused = client.post("/auth/resetPassword", json={
        "token": token, "password": "Another12!", "confirmPassword": "Another12!",
    })
    assert reused.status_code == 400


def test_forgot_password_requires_password_setup(client, make_dtuser):
    make_dtuser("a@x.com")

    resp = client.post("/auth/forgotPassword", json={"email": "a@x.com"})

    assert resp.status_code == 400


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"


def test_password_with_nul_byte_is_a_validation_error(client, make_dtuser, active_dtuser, login):
    active_dtuser("a@x.com")

    resp = login("a@x.com", "a\u0000b")

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert "password" in resp.json()["errors"]

    user = make_dtuser("b@x.com")
    client.get(f"/auth/verifyDTusermail/{user['id']}", params={"email": "b@x.com"})
    setup = client.post("/auth/setupPassword", json={
        "userId": user["id"], "email": "b@x.com",
        "password": "Secret12\u0000x", "confirmPassword": "Secret12\u0000x",
    })
    assert setup.status_code == 400
    assert "password" in setup.json()["errors"]


def test_verify_otp_rejects_non_ascii_digits(client, make_dtuser):
    make_dtuser("a@x.com")

    resp = client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": "١٢٣٤٥٦"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation error"
