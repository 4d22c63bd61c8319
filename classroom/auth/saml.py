from onelogin.saml2.auth import OneLogin_Saml2_Auth
from onelogin.saml2.idp_metadata_parser import OneLogin_Saml2_IdPMetadataParser
from onelogin.saml2.settings import OneLogin_Saml2_Settings

from classroom.core import config

EMAIL_ATTRIBUTES = ("email", "Email", "mail")
FIRST_NAME_ATTRIBUTES = ("FirstName", "givenName")
LAST_NAME_ATTRIBUTES = ("LastName", "sn", "surname")
HTTP_REDIRECT_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"


def build_saml_settings() -> dict:
    base_settings = {
        "strict": config.SAML_STRICT,
        "debug": config.SAML_DEBUG,
        "sp": {
            "entityId": config.SAML_SP_ENTITY_ID,
            "assertionConsumerService": {
                "url": config.SAML_SP_ACS_URL,
                "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
            },
            "singleLogoutService": {"url": config.SAML_SP_SLO_URL, "binding": HTTP_REDIRECT_BINDING},
            "x509cert": config.SAML_SP_X509CERT,
            "privateKey": config.SAML_SP_PRIVATE_KEY,
            "NameIDFormat": config.SAML_SP_NAMEID_FORMAT,
        },
        "idp": {
            "entityId": config.SAML_IDP_ENTITY_ID,
            "singleSignOnService": {"url": config.SAML_IDP_SSO_URL, "binding": HTTP_REDIRECT_BINDING},
            "singleLogoutService": {"url": config.SAML_IDP_SLO_URL, "binding": HTTP_REDIRECT_BINDING},
            "x509cert": config.SAML_IDP_X509CERT,
        },
    }
    if config.SAML_IDP_METADATA_PATH:
        idp_settings = OneLogin_Saml2_IdPMetadataParser.parse_remote(config.SAML_IDP_METADATA_PATH)
        return OneLogin_Saml2_IdPMetadataParser.merge_settings(base_settings, idp_settings)
    return base_settings


def init_saml_auth(request_data: dict) -> OneLogin_Saml2_Auth:
    return OneLogin_Saml2_Auth(request_data, build_saml_settings())


def build_request_data(url: str, host: str, path: str, query_params: dict, form_data: dict) -> dict:
    is_https = url.startswith("https")
    return {
        "https": "on" if is_https else "off",
        "http_host": host,
        "server_port": "443" if is_https else "80",
        "script_name": path,
        "get_data": query_params,
        "post_data": form_data,
    }


def _first_attribute(attributes: dict, names: tuple[str, ...]) -> str | None:
    for name in names:
        values = attributes.get(name) or []
        if values and values[0]:
            return values[0].strip()
    return None


def extract_identity(attributes: dict, name_id: str | None) -> tuple[str | None, str | None]:
    """Return ``(email, full_name)`` from an authenticated assertion."""
    email = _first_attribute(attributes, EMAIL_ATTRIBUTES) or name_id
    name_parts = [
        _first_attribute(attributes, FIRST_NAME_ATTRIBUTES),
        _first_attribute(attributes, LAST_NAME_ATTRIBUTES),
    ]
    full_name = " ".join(part for part in name_parts if part) or None
    return (email.strip().lower() if email else None), full_name


def generate_sp_metadata() -> tuple[str, list[str]]:
    settings = OneLogin_Saml2_Settings(build_saml_settings(), sp_validation_only=True)
    metadata = settings.get_sp_metadata()
    errors = settings.validate_metadata(metadata)
    return metadata, errors
