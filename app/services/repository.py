from __future__ import annotations

import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings
from app.services.errors import (
    CampaignFullError,
    DuplicateApplicationError,
    InvalidStateError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
)
from app.services.records import (
    ApplicationRecord,
    ApplicationStatus,
    CampaignApprovalStatus,
    CampaignRecord,
    MissionStatus,
    NotificationDraft,
    NotificationRecord,
    NotificationType,
    RevisionRecord,
    SubmissionRecord,
)
from app.services.store import InMemoryRepository
from app.services.transitions import (
    validate_application_cancel,
    validate_application_transition,
    validate_mission_review,
    validate_mission_submit,
)

logger = logging.getLogger(__name__)

NOTIFICATION_READ_FILTERS = {"all", "unread", "read"}
_BIGINT_MIN = -(2**63)
_BIGINT_MAX = 2**63 - 1

_APPLICATION_COLUMNS = """
  id::text as id,
  user_id,
  campaign_id::text as campaign_id,
  status,
  created_at,
  updated_at
"""

_SUBMISSION_SELECT = """
select
  ms.id::text as id,
  ms.application_id::text as application_id,
  ca.user_id,
  ca.campaign_id::text as campaign_id,
  ms.submission_url,
  ms.submitted_at,
  ms.reviewed_at,
  ms.client_feedback,
  ms.created_at,
  ms.updated_at
from mission_submissions ms
join campaign_applications ca on ca.id = ms.application_id
"""

_NOTIFICATION_COLUMNS = """
  id::text as id,
  user_id,
  notification_type,
  title,
  message,
  related_entity_id,
  related_entity_type,
  is_read,
  created_at,
  read_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._conn: asyncpg.Connection | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresRepository]:
        """Yield a repository bound to one connection inside a single transaction."""
        if self._conn is not None:
            async with self._conn.transaction():
                yield self
            return

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                bound = copy.copy(self)
                bound._conn = conn
                yield bound

    async def get_campaign(self, campaign_id: str) -> CampaignRecord:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    select
                      id::text as id,
                      owner_id,
                      title,
                      approval_status,
                      is_always_open,
                      recruitment_start_date,
                      recruitment_end_date,
                      mission_start_date,
                      mission_deadline_date,
                      max_applicants
                    from campaigns
                    where id = $1::uuid
                    """,
                    campaign_id,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("campaign not found") from exc
        if not row:
            raise RepositoryNotFoundError("campaign not found")
        return self._campaign_row_to_record(row)

    async def get_application(self, application_id: str) -> ApplicationRecord:
        async with self._connection() as conn:
            row = await self._fetch_application_row(conn=conn, application_id=application_id, lock=False)
        if not row:
            raise RepositoryNotFoundError("application not found")
        return self._application_row_to_record(row)

    async def list_applications_for_user(
        self,
        *,
        user_id: str,
        status: ApplicationStatus | None = None,
    ) -> list[ApplicationRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_APPLICATION_COLUMNS}
                from campaign_applications
                where user_id = $1
                  and ($2::text is null or status = $2::text)
                order by created_at desc
                """,
                user_id,
                status.value if status is not None else None,
            )
        return [self._application_row_to_record(row) for row in rows]

    async def list_applications_for_campaign(self, *, campaign_id: str) -> list[ApplicationRecord]:
        async with self._connection() as conn:
            try:
                rows = await conn.fetch(
                    f"""
                    select {_APPLICATION_COLUMNS}
                    from campaign_applications
                    where campaign_id = $1::uuid
                    order by created_at asc
                    """,
                    campaign_id,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("campaign not found") from exc
        return [self._application_row_to_record(row) for row in rows]

    async def create_application(
        self,
        *,
        user_id: str,
        campaign_id: str,
        max_applicants: int | None,
        now: datetime,
    ) -> ApplicationRecord:
        async with self._connection() as conn:
            try:
                # Serialises concurrent applicants of one campaign so the capacity check holds at commit.
                locked = await conn.fetchval(
                    "select id from campaigns where id = $1::uuid for update",
                    campaign_id,
                )
                if not locked:
                    raise RepositoryNotFoundError("campaign not found")

                exists = await conn.fetchval(
                    """
                    select 1
                    from campaign_applications
                    where campaign_id = $1::uuid
                      and user_id = $2
                    limit 1
                    """,
                    campaign_id,
                    user_id,
                )
                if exists:
                    raise DuplicateApplicationError("application already exists for this campaign")

                if max_applicants is not None:
                    applicant_count = await conn.fetchval(
                        "select count(*) from campaign_applications where campaign_id = $1::uuid",
                        campaign_id,
                    )
                    if int(applicant_count or 0) >= max_applicants:
                        raise CampaignFullError("campaign reached its applicant limit")

                row = await conn.fetchrow(
                    f"""
                    insert into campaign_applications (user_id, campaign_id, status, created_at, updated_at)
                    values ($1, $2::uuid, $3, $4, $4)
                    returning {_APPLICATION_COLUMNS}
                    """,
                    user_id,
                    campaign_id,
                    ApplicationStatus.PENDING.value,
                    now,
                )
            except pg_exc.UniqueViolationError as exc:
                raise DuplicateApplicationError("application already exists for this campaign") from exc
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("campaign not found") from exc
        return self._application_row_to_record(row)

    async def delete_application(self, *, application_id: str, user_id: str) -> None:
        async with self._connection() as conn:
            row = await self._fetch_application_row(conn=conn, application_id=application_id, lock=True)
            if not row:
                raise RepositoryNotFoundError("application not found")
            if row["user_id"] != user_id:
                raise RepositoryForbiddenError("only the applicant can cancel this application")
            validate_application_cancel(ApplicationStatus(row["status"]))
            await conn.execute("delete from campaign_applications where id = $1::uuid", application_id)

    async def update_application_status(
        self,
        *,
        application_id: str,
        status: ApplicationStatus,
        now: datetime,
    ) -> ApplicationRecord:
        async with self._connection() as conn:
            existing = await self._fetch_application_row(conn=conn, application_id=application_id, lock=True)
            if not existing:
                raise RepositoryNotFoundError("application not found")
            validate_application_transition(from_status=ApplicationStatus(existing["status"]), to_status=status)
            row = await conn.fetchrow(
                f"""
                update campaign_applications
                set status = $2, updated_at = $3
                where id = $1::uuid
                returning {_APPLICATION_COLUMNS}
                """,
                application_id,
                status.value,
                now,
            )
        return self._application_row_to_record(row)

    async def get_submission(self, submission_id: str) -> SubmissionRecord:
        async with self._connection() as conn:
            submission = await self._fetch_submission(conn=conn, column="ms.id", value=submission_id, lock=False)
        if submission is None:
            raise RepositoryNotFoundError("mission submission not found")
        return submission

    async def get_submission_for_application(self, application_id: str) -> SubmissionRecord | None:
        async with self._connection() as conn:
            return await self._fetch_submission(
                conn=conn,
                column="ms.application_id",
                value=application_id,
                lock=False,
            )

    async def save_submission(
        self,
        *,
        application_id: str,
        submission_url: str,
        now: datetime,
    ) -> SubmissionRecord:
        async with self._connection() as conn:
            application = await self._fetch_application_row(conn=conn, application_id=application_id, lock=True)
            if not application:
                raise RepositoryNotFoundError("application not found")

            existing = await self._fetch_submission(
                conn=conn,
                column="ms.application_id",
                value=application_id,
                lock=True,
            )
            current = validate_mission_submit(existing)
            if current is MissionStatus.NOT_SUBMITTED:
                try:
                    submission_id = await conn.fetchval(
                        """
                        insert into mission_submissions (
                          application_id,
                          submission_url,
                          submitted_at,
                          created_at,
                          updated_at
                        )
                        values ($1::uuid, $2, $3, $3, $3)
                        returning id::text
                        """,
                        application_id,
                        submission_url,
                        now,
                    )
                except pg_exc.UniqueViolationError as exc:
                    raise InvalidStateError("mission already submitted and awaiting review") from exc
            else:
                assert existing is not None
                submission_id = existing.id
                await conn.execute(
                    """
                    update mission_revisions
                    set revised_url = $2, revised_at = $3
                    where id = $1::uuid
                    """,
                    existing.revisions[-1].id,
                    submission_url,
                    now,
                )
                await conn.execute(
                    """
                    update mission_submissions
                    set submission_url = $2, submitted_at = $3, updated_at = $3
                    where id = $1::uuid
                    """,
                    submission_id,
                    submission_url,
                    now,
                )

            submission = await self._fetch_submission(conn=conn, column="ms.id", value=submission_id, lock=False)
        if submission is None:
            raise RepositoryNotFoundError("mission submission not found")
        return submission

    async def review_submission(
        self,
        *,
        submission_id: str,
        reviewer_id: str,
        feedback: str | None,
        revision_reason: str | None,
        now: datetime,
    ) -> SubmissionRecord:
        async with self._connection() as conn:
            existing = await self._fetch_submission(conn=conn, column="ms.id", value=submission_id, lock=True)
            if existing is None:
                raise RepositoryNotFoundError("mission submission not found")
            validate_mission_review(existing)

            if revision_reason:
                await conn.execute(
                    """
                    insert into mission_revisions (
                      submission_id,
                      revision_number,
                      requested_by,
                      revision_reason,
                      requested_at
                    )
                    values ($1::uuid, $2, $3, $4, $5)
                    """,
                    submission_id,
                    len(existing.revisions) + 1,
                    reviewer_id,
                    revision_reason,
                    now,
                )
                await conn.execute(
                    "update mission_submissions set updated_at = $2 where id = $1::uuid",
                    submission_id,
                    now,
                )
            else:
                await conn.execute(
                    """
                    update mission_submissions
                    set reviewed_at = $2, client_feedback = $3, updated_at = $2
                    where id = $1::uuid
                    """,
                    submission_id,
                    now,
                    feedback,
                )

            submission = await self._fetch_submission(conn=conn, column="ms.id", value=submission_id, lock=False)
        if submission is None:
            raise RepositoryNotFoundError("mission submission not found")
        return submission

    async def list_submissions_for_user(self, *, user_id: str) -> list[SubmissionRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                {_SUBMISSION_SELECT}
                where ca.user_id = $1
                order by ms.submitted_at desc
                """,
                user_id,
            )
            return await self._submissions_with_revisions(conn=conn, rows=rows)

    async def list_submissions_for_campaign(self, *, campaign_id: str) -> list[SubmissionRecord]:
        async with self._connection() as conn:
            try:
                rows = await conn.fetch(
                    f"""
                    {_SUBMISSION_SELECT}
                    where ca.campaign_id = $1::uuid
                    order by ms.submitted_at desc
                    """,
                    campaign_id,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("campaign not found") from exc
            return await self._submissions_with_revisions(conn=conn, rows=rows)

    async def create_notification(self, *, draft: NotificationDraft, now: datetime | None = None) -> NotificationRecord:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                insert into notifications (
                  user_id,
                  notification_type,
                  title,
                  message,
                  related_entity_id,
                  related_entity_type,
                  is_read,
                  created_at
                )
                values ($1, $2, $3, $4, $5, $6, false, $7)
                returning {_NOTIFICATION_COLUMNS}
                """,
                draft.user_id,
                draft.type.value,
                draft.title,
                draft.message,
                draft.related_entity_id,
                draft.related_entity_type,
                now or datetime.now(timezone.utc),
            )
        return self._notification_row_to_record(row)

    async def get_notification(self, *, user_id: str, notification_id: str) -> NotificationRecord:
        numeric_id = self._coerce_notification_id(notification_id)
        if numeric_id is None:
            raise RepositoryNotFoundError("notification not found")
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                select {_NOTIFICATION_COLUMNS}
                from notifications
                where id = $1 and user_id = $2
                """,
                numeric_id,
                user_id,
            )
        if not row:
            raise RepositoryNotFoundError("notification not found")
        return self._notification_row_to_record(row)

    async def list_notifications(
        self,
        *,
        user_id: str,
        read_filter: str = "all",
        limit: int = 20,
        offset: int = 0,
    ) -> list[NotificationRecord]:
        read_value = {"unread": False, "read": True}.get(read_filter)
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_NOTIFICATION_COLUMNS}
                from notifications
                where user_id = $1
                  and ($2::boolean is null or is_read = $2::boolean)
                order by created_at desc, id desc
                limit $3 offset $4
                """,
                user_id,
                read_value,
                limit,
                offset,
            )
        return [self._notification_row_to_record(row) for row in rows]

    async def count_unread(self, *, user_id: str) -> int:
        async with self._connection() as conn:
            count = await conn.fetchval(
                "select count(*) from notifications where user_id = $1 and is_read = false",
                user_id,
            )
        return int(count or 0)

    async def mark_notifications_read(
        self,
        *,
        user_id: str,
        notification_ids: list[str] | None,
        now: datetime,
    ) -> int:
        async with self._connection() as conn:
            if notification_ids:
                numeric_ids = [
                    numeric_id
                    for numeric_id in (self._coerce_notification_id(item) for item in notification_ids)
                    if numeric_id is not None
                ]
                if not numeric_ids:
                    return 0
                rows = await conn.fetch(
                    """
                    update notifications
                    set is_read = true, read_at = $3
                    where user_id = $1
                      and id = any($2::bigint[])
                      and is_read = false
                    returning id
                    """,
                    user_id,
                    numeric_ids,
                    now,
                )
            else:
                rows = await conn.fetch(
                    """
                    update notifications
                    set is_read = true, read_at = $2
                    where user_id = $1
                      and is_read = false
                    returning id
                    """,
                    user_id,
                    now,
                )
        return len(rows)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._conn is not None:
            yield self._conn
            return

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    yield conn
        except RepositoryError:
            raise
        except (OSError, pg_exc.PostgresConnectionError, pg_exc.InterfaceError) as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CN_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    async def _fetch_application_row(
        self,
        *,
        conn: asyncpg.Connection,
        application_id: str,
        lock: bool,
    ) -> asyncpg.Record | None:
        try:
            return await conn.fetchrow(
                f"""
                select {_APPLICATION_COLUMNS}
                from campaign_applications
                where id = $1::uuid
                {'for update' if lock else ''}
                """,
                application_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("application not found") from exc

    async def _fetch_submission(
        self,
        *,
        conn: asyncpg.Connection,
        column: str,
        value: str,
        lock: bool,
    ) -> SubmissionRecord | None:
        try:
            row = await conn.fetchrow(
                f"""
                {_SUBMISSION_SELECT}
                where {column} = $1::uuid
                {'for update of ms' if lock else ''}
                """,
                value,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("mission submission not found") from exc
        if not row:
            return None
        submissions = await self._submissions_with_revisions(conn=conn, rows=[row])
        return submissions[0]

    async def _submissions_with_revisions(
        self,
        *,
        conn: asyncpg.Connection,
        rows: list[asyncpg.Record],
    ) -> list[SubmissionRecord]:
        if not rows:
            return []
        revision_rows = await conn.fetch(
            """
            select
              id::text as id,
              submission_id::text as submission_id,
              revision_number,
              requested_by,
              revision_reason,
              requested_at,
              revised_url,
              revised_at
            from mission_revisions
            where submission_id = any($1::uuid[])
            order by submission_id, revision_number asc
            """,
            [row["id"] for row in rows],
        )
        revisions: dict[str, list[RevisionRecord]] = {}
        for revision_row in revision_rows:
            revisions.setdefault(revision_row["submission_id"], []).append(
                self._revision_row_to_record(revision_row)
            )
        return [self._submission_row_to_record(row, revisions.get(row["id"], [])) for row in rows]

    @staticmethod
    def _campaign_row_to_record(row: asyncpg.Record) -> CampaignRecord:
        return CampaignRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            approval_status=CampaignApprovalStatus(row["approval_status"]),
            is_always_open=bool(row["is_always_open"]),
            recruitment_start_date=row["recruitment_start_date"],
            recruitment_end_date=row["recruitment_end_date"],
            mission_start_date=row["mission_start_date"],
            mission_deadline_date=row["mission_deadline_date"],
            max_applicants=row["max_applicants"],
        )

    @staticmethod
    def _application_row_to_record(row: asyncpg.Record) -> ApplicationRecord:
        return ApplicationRecord(
            id=row["id"],
            user_id=row["user_id"],
            campaign_id=row["campaign_id"],
            status=ApplicationStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _revision_row_to_record(row: asyncpg.Record) -> RevisionRecord:
        return RevisionRecord(
            id=row["id"],
            revision_number=row["revision_number"],
            requested_by=row["requested_by"],
            revision_reason=row["revision_reason"],
            requested_at=row["requested_at"],
            revised_url=row["revised_url"],
            revised_at=row["revised_at"],
        )

    @staticmethod
    def _submission_row_to_record(row: asyncpg.Record, revisions: list[RevisionRecord]) -> SubmissionRecord:
        return SubmissionRecord(
            id=row["id"],
            application_id=row["application_id"],
            user_id=row["user_id"],
            campaign_id=row["campaign_id"],
            submission_url=row["submission_url"],
            submitted_at=row["submitted_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            reviewed_at=row["reviewed_at"],
            client_feedback=row["client_feedback"],
            revisions=revisions,
        )

    @staticmethod
    def _notification_row_to_record(row: asyncpg.Record) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            type=NotificationType(row["notification_type"]),
            title=row["title"],
            message=row["message"],
            related_entity_id=row["related_entity_id"],
            related_entity_type=row["related_entity_type"],
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
            read_at=row["read_at"],
        )

    @staticmethod
    def _coerce_notification_id(value: Any) -> int | None:
        try:
            numeric_id = int(str(value).strip())
        except (TypeError, ValueError):
            return None
        if not _BIGINT_MIN <= numeric_id <= _BIGINT_MAX:
            return None
        return numeric_id


Repository = PostgresRepository | InMemoryRepository


@lru_cache
def get_repository() -> Repository:
    settings = get_settings()
    if not settings.database_url:
        logger.warning("CN_DATABASE_URL not set; using in-memory repository (state is lost on restart)")
        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
