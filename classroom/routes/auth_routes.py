import logging
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy import or_
from sqlalchemy.orm import Session

from classroom.auth import jwt_handler, saml
from classroom.auth.dependencies import get_current_user
from classroom.core import config
from classroom.database import get_db
from classroom.models.user import User

router = APIRouter(tags=["auth"])

logger = logging.getLogger(__name__)

SSO_PROVIDER = "saml"


async def _saml_auth_for(request: Request):
    form_data = await request.form()
    request_data = saml.build_request_data(
        url=str(request.url),
        host=request.headers.get("host", ""),
        path=request.url.path,
        query_params=dict(request.query_params),
        form_data=dict(form_data),
    )
    return saml.init_saml_auth(request_data)


def provision_sso_user(db: Session, email: str, full_name: str | None, name_id: str | None) -> User:
    criteria = User.email == email
    if name_id:
        criteria = or_(criteria, User.sso_subject == name_id)

    user = db.query(User).filter(criteria).first()
    if user is None:
        user = User(
            email=email,
            full_name=full_name,
            sso_provider=SSO_PROVIDER,
            sso_subject=name_id,
        )
        db.add(user)
        logger.info("Provisioned SSO user %s", email)
    else:
        user.full_name = user.full_name or full_name
        user.sso_provider = user.sso_provider or SSO_PROVIDER
        user.sso_subject = user.sso_subject or name_id
    db.commit()
    db.refresh(user)
    return user


def build_frontend_redirect(token: str) -> str:
    parsed = urlparse(config.FRONTEND_SSO_REDIRECT_URL)
    query = dict(parse_qsl(parsed.query))
    query.update({"access_token": token, "token_type": "bearer"})
    return urlunparse(parsed._replace(query=urlencode(query)))


@router.get("/sso/login")
async def sso_login(request: Request):
    auth = await _saml_auth_for(request)
    return RedirectResponse(url=auth.login())


@router.post("/sso/acs")
async def sso_acs(request: Request, db: Session = Depends(get_db)):
    auth = await _saml_auth_for(request)
    auth.process_response()
    errors = auth.get_errors()
    if errors:
        logger.warning("SAML response rejected: %s", errors)
        raise HTTPException(status_code=400, detail={"saml_errors": errors})
    if not auth.is_authenticated():
        raise HTTPException(status_code=401, detail="SAML authentication failed")

    name_id = auth.get_nameid()
    email, full_name = saml.extract_identity(auth.get_attributes(), name_id)
    if not email:
        raise HTTPException(status_code=400, detail="Email not found in SAML response")

    user = provision_sso_user(db, email, full_name, name_id)

    token = jwt_handler.create_access_token(subject=user.id)
    if config.FRONTEND_SSO_REDIRECT_URL:
        return RedirectResponse(url=build_frontend_redirect(token), status_code=302)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/sso/metadata")
def sso_metadata():
    metadata, errors = saml.generate_sp_metadata()
    if errors:
        raise HTTPException(status_code=500, detail={"metadata_errors": errors})
    return Response(content=metadata, media_type="application/xml")


@router.get("/sso/logout")
async def sso_logout(request: Request):
    auth = await _saml_auth_for(request)
    return RedirectResponse(url=auth.logout())


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"id": current_user.id, "email": current_user.email, "full_name": current_user.full_name}
