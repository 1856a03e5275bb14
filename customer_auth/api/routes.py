from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Path, UploadFile
from fastapi.responses import FileResponse, PlainTextResponse

from customer_auth.api.schemas import (
    Envelope,
    LangRequest,
    LoginMethodRequest,
    LoginMethodResponse,
    LoginRequest,
    ProfileResponse,
    RegisterRequest,
    SavedServiceRequest,
    SavedServicesResponse,
    TokenResponse,
    parse_birth_date,
    parse_gender,
    validate_name,
    validate_password,
    validate_phone,
)
from customer_auth.logging import get_logger
from customer_auth.service.assets import UploadedImage
from customer_auth.service.customers import AuthContext
from customer_auth.service.decision import LoginMethod
from customer_auth.service.errors import AuthenticationError
from customer_auth.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/customer")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_customer(authorization: Optional[str] = Header(None)) -> AuthContext:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("missing bearer token")
    runtime = get_runtime()
    return await runtime.customers.authenticate(token)


@router.post("/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(
    body: RegisterRequest,
    x_device_id: Optional[str] = Header(None, alias="X-Device-ID"),
):
    """Create a customer account and return its first session token.

    When ``trust`` is set the calling device is remembered, so later logins
    from it use a one-time code instead of the password.
    """
    runtime = get_runtime()
    token = await runtime.customers.register(
        name=body.name,
        phone=body.phone,
        password=body.password,
        trust=body.trust,
        device_id=x_device_id,
    )
    return Envelope(status="ok", data=TokenResponse(token=token))


@router.post("/getlogin", response_model=Envelope, tags=["auth"])
async def get_login_method(
    body: LoginMethodRequest,
    x_device_id: Optional[str] = Header(None, alias="X-Device-ID"),
):
    """Report which credential the login must carry and send a code if it is an OTP."""
    runtime = get_runtime()
    method = await runtime.customers.get_login_method(body.phone, x_device_id)
    return Envelope(
        status="ok",
        data=LoginMethodResponse(
            password=method is LoginMethod.PASSWORD,
            otp=method is LoginMethod.OTP,
            method=method.value,
        ),
    )


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest,
    x_device_id: Optional[str] = Header(None, alias="X-Device-ID"),
):
    runtime = get_runtime()
    token = await runtime.customers.login(
        phone=body.phone,
        device_id=x_device_id,
        password=body.password,
        otp=body.otp,
        trust=body.trust,
    )
    return Envelope(status="ok", data=TokenResponse(token=token))


@router.post("/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_customer)):
    runtime = get_runtime()
    revoked = await runtime.customers.logout(principal.customer_id)
    return Envelope(status="ok", data={"revoked": revoked})


@router.get("/profile", response_model=Envelope, tags=["profile"])
async def get_profile(principal: AuthContext = Depends(get_customer)):
    runtime = get_runtime()
    profile = await runtime.customers.get_profile(principal.customer_id)
    return Envelope(status="ok", data=ProfileResponse(**profile))


@router.put("/profile", response_model=Envelope, tags=["profile"])
async def update_profile(
    name: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    delete_image: bool = Form(False, alias="deleteImage"),
    gender: Optional[str] = Form(None),
    birth_date: Optional[str] = Form(None, alias="birthDate"),
    avatar: Optional[UploadFile] = File(None),
    principal: AuthContext = Depends(get_customer),
):
    """Update profile fields from a multipart form.

    A new ``avatar`` replaces the stored image; ``deleteImage`` clears it.
    Blank fields are left unchanged.
    """
    runtime = get_runtime()
    errors: dict[str, str] = {}
    parsed: dict[str, object] = {}
    for field, raw, parser in (
        ("name", name, validate_name),
        ("password", password, validate_password),
        ("gender", gender, parse_gender),
        ("birthDate", birth_date, parse_birth_date),
    ):
        if raw is None or not raw.strip():
            parsed[field] = None
            continue
        try:
            parsed[field] = parser(raw)
        except ValueError as exc:
            errors[field] = str(exc)
    if errors:
        raise _http_error("validation_error", "invalid profile fields", 400, errors)

    image = None
    if avatar is not None and avatar.filename:
        max_bytes = runtime.settings.max_upload_bytes
        contents = await avatar.read(max_bytes + 1)
        if len(contents) > max_bytes:
            raise _http_error("validation_error", "image too large", 413)
        image = UploadedImage(filename=avatar.filename, content=contents)

    await runtime.customers.update_profile(
        principal.customer_id,
        name=parsed["name"],
        password=parsed["password"],
        delete_image=delete_image,
        gender=parsed["gender"],
        birth_date=parsed["birthDate"],
        avatar=image,
    )
    profile = await runtime.customers.get_profile(principal.customer_id)
    return Envelope(status="ok", data=ProfileResponse(**profile))


@router.put("/lang", response_model=Envelope, tags=["profile"])
async def update_lang(body: LangRequest, principal: AuthContext = Depends(get_customer)):
    runtime = get_runtime()
    await runtime.customers.update_lang(principal.customer_id, body.lang)
    return Envelope(status="ok", data={"lang": body.lang})


@router.post("/saved-services", response_model=Envelope, tags=["profile"])
async def add_saved_service(
    body: SavedServiceRequest, principal: AuthContext = Depends(get_customer)
):
    runtime = get_runtime()
    saved = await runtime.customers.add_saved_service(principal.customer_id, body.service_id)
    return Envelope(status="ok", data=SavedServicesResponse(saved_services=saved))


@router.delete("/saved-services/{service_id}", response_model=Envelope, tags=["profile"])
async def remove_saved_service(
    service_id: str = Path(..., max_length=128),
    principal: AuthContext = Depends(get_customer),
):
    runtime = get_runtime()
    removed = await runtime.customers.remove_saved_service(principal.customer_id, service_id)
    if not removed:
        raise _http_error("not_found", "saved service not found", 404)
    return Envelope(status="ok", data={"removed": True})


@router.get("/photo/{file}", response_class=FileResponse, tags=["profile"])
async def get_photo(file: str = Path(..., max_length=255)):
    runtime = get_runtime()
    path = runtime.images.path_for(file)
    if path is None:
        raise _http_error("not_found", "photo not found", 404)
    return FileResponse(path)


@router.get("/otp/recievebysms/{phone}", response_class=PlainTextResponse, tags=["dev"])
async def receive_otp(phone: str = Path(..., max_length=32)):
    """Return the pending one-time code for ``phone``; only for local development."""
    runtime = get_runtime()
    if not runtime.settings.expose_otp_endpoint:
        raise _http_error("not_found", "not found", 404)
    try:
        normalized = validate_phone(phone)
    except ValueError as exc:
        raise _http_error("validation_error", str(exc), 400) from exc
    code = await runtime.otp.peek(normalized)
    if code is None:
        raise _http_error("not_found", "no pending code", 404)
    logger.warning("otp_exposed_for_development", phone=normalized)
    return PlainTextResponse(str(code.code))
