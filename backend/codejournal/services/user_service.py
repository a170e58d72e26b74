"""
Code Journal Backend — User Service
====================================

What:  Registration, login, profiles, user queries, capability changes
       and account removal, plus this journal's own federation `servers` row.
Why:   Every submission, review and comment references a GlobalUser; this
       is the only place those identities are created or retired.
How:   Validation rules from services/validation.py, bcrypt hashes and JWTs
       from security.py, rows through the relational store.

Registration Flow:
    validate fields → email unique among live users → hash password
    → mint `<group><uuid>` ID → insert User + GlobalUser → commit
"""

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from codejournal.config import settings
from codejournal.database import utcnow
from codejournal.exceptions import (
    AuthenticationError,
    BadUserError,
    DuplicateEmailError,
    ValidationError,
    WrongPermissionsError,
)
from codejournal.models import Capability, GlobalUser, Server, User
from codejournal.schemas.user import (
    FederatedUserResponse,
    PermissionsResponse,
    UserProfileResponse,
    UserQueryResponse,
    UserSummary,
)
from codejournal.security import (
    create_access_token,
    generate_server_token,
    get_password_hash,
    verify_password,
)
from codejournal.services.identifiers import is_local_user_id, mint_global_user_id
from codejournal.services.relational import RelationalStore, relational_store
from codejournal.services.validation import (
    normalize_email,
    validate_password,
    validate_person_name,
)

logger = logging.getLogger(__name__)

USER_ORDERINGS = {"firstName": "first_name", "lastName": "last_name"}


def parse_capabilities(names: Sequence[str]) -> Capability:
    try:
        return Capability.from_names(names)
    except ValueError as e:
        raise ValidationError(message=str(e), field="capabilities") from None


class UserService:
    """Account lifecycle over the relational store."""

    def __init__(self, rs: Optional[RelationalStore] = None):
        self.rs = rs or relational_store

    async def register(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone_number: Optional[str] = None,
        organization: Optional[str] = None,
        capabilities: Sequence[str] = ("publisher",),
    ) -> GlobalUser:
        """
        Create a User and its GlobalUser.

        Raises:
            ValidationError: bad email, password, name or capability, or a
                request for the editor capability
            DuplicateEmailError: a live user already has this email
        """
        email = normalize_email(email)
        validate_password(password)
        first_name = validate_person_name(first_name, "firstName")
        last_name = validate_person_name(last_name, "lastName")
        requested = parse_capabilities(capabilities)
        if Capability.EDITOR in requested:
            raise ValidationError(
                message="The editor capability cannot be requested at registration",
                field="capabilities",
            )
        if email in settings.editor_emails_set:
            requested |= Capability.EDITOR

        if not await self.rs.is_unique(db, User.__table__.c.email, email):
            raise DuplicateEmailError(email)

        user = User(
            email=email,
            password_hash=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number or None,
            organization=organization or None,
        )
        try:
            global_user = await self.rs.insert_user(db, user, mint_global_user_id(), requested)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateEmailError(email) from None

        logger.info("Registered user %s (%s)", global_user.id, requested.role_name)
        return global_user

    async def login(self, db: AsyncSession, email: str, password: str) -> Tuple[str, str]:
        """Returns (global user ID, access token); AuthenticationError otherwise."""
        user = await self.rs.find_user_by_email(db, email.strip().lower())
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt for %s", email.strip().lower())
            raise AuthenticationError("Invalid email or password")
        global_user = user.global_user
        if global_user is None or global_user.deleted_at is not None:
            raise AuthenticationError("Invalid email or password")
        return global_user.id, create_access_token(global_user.id)

    async def get_profile(self, db: AsyncSession, user_id: str) -> UserProfileResponse:
        global_user = await self.rs.get_global_user(db, user_id)
        user = global_user.user
        return UserProfileResponse(
            user_id=global_user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone_number=user.phone_number,
            organization=user.organization,
            role=global_user.capabilities.role_name,
            capabilities=global_user.capabilities.names,
            submissions=await self.rs.authored_submission_ids(db, global_user.id),
        )

    async def query_users(
        self,
        db: AsyncSession,
        user_type: Optional[str] = None,
        organization: Optional[str] = None,
        name: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> UserQueryResponse:
        """
        Search live users.

        Args:
            user_type:     capability the users must hold (publisher, reviewer
                           or editor)
            organization:  substring of the organization
            name:          substring of the first or last name
            order_by:      "firstName" or "lastName"

        Raises ValidationError for an unknown user type or ordering.
        """
        capability = None
        if user_type:
            try:
                capability = Capability.from_names([user_type])
            except ValueError:
                capability = Capability.NONE
            if not capability:
                raise ValidationError(
                    message=f"Unknown user type '{user_type}'",
                    field="userType",
                    context={"allowed": ["publisher", "reviewer", "editor"]},
                )
        column = None
        if order_by:
            column = USER_ORDERINGS.get(order_by)
            if column is None:
                raise ValidationError(
                    message=f"Cannot order users by '{order_by}'",
                    field="orderBy",
                    context={"allowed": sorted(USER_ORDERINGS)},
                )

        rows = await self.rs.query_users(
            db,
            capability=capability,
            organization=(organization or "").strip() or None,
            name=(name or "").strip() or None,
            order_by=column,
        )
        users = [
            UserSummary(
                user_id=row.id,
                first_name=row.user.first_name,
                last_name=row.user.last_name,
                organization=row.user.organization,
                role=row.capabilities.role_name,
                capabilities=row.capabilities.names,
            )
            for row in rows
        ]
        return UserQueryResponse(users=users, total_count=len(users))

    async def federated_profile(self, db: AsyncSession, user_id: str) -> FederatedUserResponse:
        """Peers may only ask about users registered with this journal."""
        if not is_local_user_id(user_id):
            raise BadUserError(user_id)
        global_user = await self.rs.get_global_user(db, user_id)
        return FederatedUserResponse(
            user_id=global_user.id,
            first_name=global_user.user.first_name,
            last_name=global_user.user.last_name,
            organization=global_user.user.organization,
        )

    async def set_capabilities(
        self,
        db: AsyncSession,
        caller: GlobalUser,
        user_id: str,
        capabilities: List[str],
    ) -> PermissionsResponse:
        """Editors replace another user's capability set."""
        if not caller.has(Capability.EDITOR):
            raise WrongPermissionsError(caller.id, required="editor")
        target = await self.rs.get_global_user(db, user_id)
        target.capabilities = parse_capabilities(capabilities)
        target.updated_at = utcnow()
        await db.commit()
        logger.info(
            "Capabilities of %s set to %s by %s",
            target.id,
            target.capabilities.names,
            caller.id,
        )
        return PermissionsResponse(
            user_id=target.id,
            role=target.capabilities.role_name,
            capabilities=target.capabilities.names,
        )

    async def delete_account(self, db: AsyncSession, caller: GlobalUser, user_id: str) -> None:
        """Soft-delete the caller's own User and GlobalUser rows."""
        if caller.id != user_id:
            raise WrongPermissionsError(caller.id, required="account owner")
        target = await self.rs.get_global_user(db, user_id)
        now = utcnow()
        target.deleted_at = now
        target.user.deleted_at = now
        await db.commit()
        logger.info("User %s deleted their account", user_id)

    async def ensure_self_server(self, db: AsyncSession) -> Server:
        """Create this journal's `servers` row with a fresh token if missing."""
        result = await db.execute(
            select(Server).where(Server.group_number == settings.group_number)
        )
        server = result.scalar_one_or_none()
        if server is not None:
            return server
        server = Server(
            group_number=settings.group_number,
            token=generate_server_token(),
            url=settings.backend_url,
        )
        db.add(server)
        await db.commit()
        logger.info(
            "Created security token for group %d: %s",
            server.group_number,
            server.token,
        )
        return server


# ── Singleton Instance ────────────────────────────────────────────────────
user_service = UserService()
