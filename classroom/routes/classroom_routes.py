import logging
from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, computed_field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from classroom.auth.dependencies import get_current_user
from classroom.auth.roles import get_membership, is_privileged
from classroom.database import SESSION_OVERLAP_CONSTRAINT, ensure_classroom_session_schema, get_db
from classroom.models.classroom_session import SESSION_STATUS_SCHEDULED, ClassroomSession
from classroom.models.organization import Organization, OrgMember
from classroom.models.user import User
from classroom.services.notifications import BookedSessionNotice, notify_session_booked

router = APIRouter(tags=['classroom'])

logger = logging.getLogger(__name__)

SESSION_DURATION_MINUTES = 30
DAY_OPEN_TIME = time(9, 0)
LAST_START_TIME = time(16, 30)
UPCOMING_SESSIONS_LIMIT = 10
JOIN_WINDOW_MINUTES = 5
REQUIRED_BOOKING_FIELDS = ('org_id', 'instructor_id', 'student_id', 'start_time', 'end_time')
INSTRUCTOR_UNAVAILABLE_DETAIL = 'Instructor is not available at this time'


def to_utc_naive(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; aware inputs are converted first."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CreateSessionRequest(BaseModel):
    org_id: int | None = None
    instructor_id: int | None = None
    student_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None

    @field_validator(*REQUIRED_BOOKING_FIELDS, mode='before')
    @classmethod
    def treat_blank_as_missing(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_utc_naive(value)


class UserSummaryResponse(BaseModel):
    id: int
    email: str
    full_name: str | None = None

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    id: int
    org_id: int
    instructor_id: int
    student_id: int
    start_time: datetime
    end_time: datetime
    status: str
    created_at: datetime | None = None
    instructor: UserSummaryResponse | None = None
    student: UserSummaryResponse | None = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def room_name(self) -> str:
        return f'session-{self.id}'

    @computed_field
    @property
    def can_join(self) -> bool:
        return can_join_session(self.start_time, self.end_time, utcnow())


class CancelSessionResponse(BaseModel):
    message: str


class InstructorResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str


class InstructorDashboardResponse(BaseModel):
    sessions: list[SessionResponse]
    total_sessions: int
    upcoming_sessions: int


class SessionSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    is_available: bool
    is_booked: bool


def ensure_database_ready() -> None:
    try:
        ensure_classroom_session_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def can_join_session(start_time: datetime, end_time: datetime, now: datetime) -> bool:
    # The room opens a few minutes early and closes when the session ends.
    return start_time - timedelta(minutes=JOIN_WINDOW_MINUTES) <= now <= end_time


def sessions_overlap(
    first_start: datetime,
    first_end: datetime,
    second_start: datetime,
    second_end: datetime,
) -> bool:
    # Half-open intervals: a session ending at 10:30 leaves 10:30 free.
    return first_start < second_end and first_end > second_start


def find_conflicting_sessions(
    db: Session,
    instructor_id: int,
    start_time: datetime,
    end_time: datetime,
) -> list[ClassroomSession]:
    return db.query(ClassroomSession).filter(
        ClassroomSession.instructor_id == instructor_id,
        ClassroomSession.status == SESSION_STATUS_SCHEDULED,
        ClassroomSession.start_time < end_time,
        ClassroomSession.end_time > start_time,
    ).order_by(ClassroomSession.start_time.asc()).all()


def is_overlap_violation(exc: IntegrityError) -> bool:
    return SESSION_OVERLAP_CONSTRAINT in str(exc.orig)


def require_membership(db: Session, org_id: int, user: User) -> OrgMember:
    membership = get_membership(db, org_id, user.id)
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
    return membership


def validate_booking_request(data: CreateSessionRequest) -> None:
    if any(getattr(data, field_name) is None for field_name in REQUIRED_BOOKING_FIELDS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Missing required fields',
        )

    if data.start_time >= data.end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Session must end after it starts.',
        )

    if data.start_time <= utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Sessions must be scheduled in the future.',
        )

    if data.instructor_id == data.student_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Instructor and student must be different users.',
        )


def build_booked_notice(session: ClassroomSession, organization: Organization | None) -> BookedSessionNotice:
    return BookedSessionNotice(
        org_id=session.org_id,
        organization_name=organization.name if organization else 'Your Organization',
        start_time=session.start_time,
        end_time=session.end_time,
        instructor_name=session.instructor.display_name,
        instructor_email=session.instructor.email,
        student_name=session.student.display_name,
        student_email=session.student.email,
    )


def iterate_day_slots(day: date) -> list[tuple[datetime, datetime]]:
    slots: list[tuple[datetime, datetime]] = []
    current = datetime.combine(day, DAY_OPEN_TIME)
    last_start = datetime.combine(day, LAST_START_TIME)

    while current <= last_start:
        slots.append((current, current + timedelta(minutes=SESSION_DURATION_MINUTES)))
        current += timedelta(minutes=SESSION_DURATION_MINUTES)

    return slots


def _session_query(db: Session):
    return db.query(ClassroomSession).options(
        joinedload(ClassroomSession.instructor),
        joinedload(ClassroomSession.student),
    )


@router.post('/sessions', response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def book_session(
    data: CreateSessionRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    validate_booking_request(data)

    ensure_database_ready()

    try:
        membership = require_membership(db, data.org_id, current_user)

        if not is_privileged(get_membership(db, data.org_id, data.instructor_id)):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Instructor is not an instructor in this organization.',
            )

        if get_membership(db, data.org_id, data.student_id) is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Student is not a member of this organization.',
            )

        if current_user.id not in (data.instructor_id, data.student_id) and not is_privileged(membership):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only participants or organization managers can book sessions.',
            )

        if find_conflicting_sessions(db, data.instructor_id, data.start_time, data.end_time):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=INSTRUCTOR_UNAVAILABLE_DETAIL,
            )

        session = ClassroomSession(
            org_id=data.org_id,
            instructor_id=data.instructor_id,
            student_id=data.student_id,
            start_time=data.start_time,
            end_time=data.end_time,
            status=SESSION_STATUS_SCHEDULED,
        )
        db.add(session)
        db.commit()
        db.refresh(session)

        response = SessionResponse.model_validate(session)
        notice = build_booked_notice(session, db.get(Organization, data.org_id))
    except IntegrityError as exc:
        db.rollback()
        if is_overlap_violation(exc):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=INSTRUCTOR_UNAVAILABLE_DETAIL,
            ) from exc
        logger.exception('Error creating session')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to create session',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Error creating session')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to create session',
        ) from exc

    logger.info(
        'Booked session %s for instructor %s and student %s at %s',
        response.id,
        response.instructor_id,
        response.student_id,
        response.start_time.isoformat(),
    )
    background_tasks.add_task(notify_session_booked, notice)

    return response


@router.delete('/sessions/{session_id}', response_model=CancelSessionResponse)
def cancel_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        session = db.query(ClassroomSession).filter(ClassroomSession.id == session_id).first()

        if not session:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Session not found',
            )

        if current_user.id not in (session.instructor_id, session.student_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Forbidden',
            )

        db.delete(session)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Error deleting session %s', session_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to delete session',
        ) from exc

    logger.info('Session %s cancelled by user %s', session_id, current_user.id)
    return CancelSessionResponse(message='Session cancelled successfully')


@router.get('/sessions', response_model=list[SessionResponse])
def list_my_sessions(
    org_id: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        require_membership(db, org_id, current_user)

        sessions = _session_query(db).filter(
            ClassroomSession.org_id == org_id,
            or_(
                ClassroomSession.instructor_id == current_user.id,
                ClassroomSession.student_id == current_user.id,
            ),
            ClassroomSession.start_time >= utcnow(),
        ).order_by(ClassroomSession.start_time.asc()).limit(UPCOMING_SESSIONS_LIMIT).all()

        return [SessionResponse.model_validate(session) for session in sessions]
    except SQLAlchemyError as exc:
        logger.exception('Error listing sessions for user %s', current_user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to load sessions',
        ) from exc


@router.get('/instructors', response_model=list[InstructorResponse])
def list_instructors(
    org_id: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        require_membership(db, org_id, current_user)

        members = db.query(OrgMember).options(joinedload(OrgMember.user)).filter(
            OrgMember.org_id == org_id,
            OrgMember.user_id != current_user.id,
        ).order_by(OrgMember.id.asc()).all()
        instructors = [member for member in members if is_privileged(member)]

        return [
            InstructorResponse(
                id=instructor.user.id,
                name=instructor.user.display_name,
                email=instructor.user.email,
                role=instructor.role,
            )
            for instructor in instructors
        ]
    except SQLAlchemyError as exc:
        logger.exception('Error listing instructors for organization %s', org_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to load instructors',
        ) from exc


@router.get('/manage', response_model=InstructorDashboardResponse)
def instructor_dashboard(
    org_id: int = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if not is_privileged(require_membership(db, org_id, current_user)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only instructors can manage sessions.',
            )

        now = utcnow()
        sessions = _session_query(db).filter(
            ClassroomSession.org_id == org_id,
            ClassroomSession.instructor_id == current_user.id,
            ClassroomSession.start_time >= now,
        ).order_by(ClassroomSession.start_time.asc()).all()

        total_sessions = db.query(func.count(ClassroomSession.id)).filter(
            ClassroomSession.org_id == org_id,
            ClassroomSession.instructor_id == current_user.id,
        ).scalar()

        return InstructorDashboardResponse(
            sessions=[SessionResponse.model_validate(session) for session in sessions],
            total_sessions=total_sessions or 0,
            upcoming_sessions=len(sessions),
        )
    except SQLAlchemyError as exc:
        logger.exception('Error loading dashboard for instructor %s', current_user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to load sessions',
        ) from exc


@router.get('/instructors/{instructor_id}/slots', response_model=list[SessionSlotResponse])
def list_instructor_slots(
    instructor_id: int,
    org_id: int = Query(...),
    day: date = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        require_membership(db, org_id, current_user)

        if not is_privileged(get_membership(db, org_id, instructor_id)):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Instructor not found.',
            )

        day_slots = iterate_day_slots(day)
        booked_sessions = find_conflicting_sessions(db, instructor_id, day_slots[0][0], day_slots[-1][1])
        now = utcnow()

        slots: list[SessionSlotResponse] = []
        for slot_start, slot_end in day_slots:
            is_booked = any(
                sessions_overlap(slot_start, slot_end, booked.start_time, booked.end_time)
                for booked in booked_sessions
            )
            slots.append(
                SessionSlotResponse(
                    start_time=slot_start,
                    end_time=slot_end,
                    is_available=not is_booked and slot_start > now,
                    is_booked=is_booked,
                )
            )

        return slots
    except SQLAlchemyError as exc:
        logger.exception('Error loading slots for instructor %s', instructor_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Failed to load availability',
        ) from exc
