"""Organization role checks shared by every handler."""

from sqlalchemy.orm import Session

from classroom.models.organization import OrgMember

PRIVILEGED_ROLES = ('owner', 'admin', 'manager')


def is_privileged(membership: OrgMember | None) -> bool:
    """True when the member may act as an instructor and manage others."""
    if membership is None:
        return False
    return (membership.role or '').strip().lower() in PRIVILEGED_ROLES


def get_membership(db: Session, org_id: int, user_id: int) -> OrgMember | None:
    return db.query(OrgMember).filter(
        OrgMember.org_id == org_id,
        OrgMember.user_id == user_id,
    ).first()
