from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from jobportal.core.errors import ConflictError, ValidationError
from jobportal.core.steps import PENDING
from jobportal.db.repositories import IntakeStore
from jobportal.schemas.applicant import ApplicantDetails
from jobportal.services.reference_codes import ReferenceCodeGenerator, temporary_reference_code

logger = logging.getLogger("jp.resolver")

MAX_CONFLICT_RETRIES = 3


@dataclass(frozen=True)
class ApplicantKey:
    identity_key: str | None
    email: str | None


LookupStrategy = Callable[[IntakeStore, ApplicantKey], Awaitable[Optional[int]]]


async def lookup_by_identity_key(store: IntakeStore, key: ApplicantKey) -> int | None:
    if not key.identity_key:
        return None
    return await store.find_applicant_id_by_user(key.identity_key)


async def lookup_by_email(store: IntakeStore, key: ApplicantKey) -> int | None:
    if not key.email:
        return None
    return await store.find_applicant_id_by_email(key.email)


DEFAULT_STRATEGIES: tuple[LookupStrategy, ...] = (lookup_by_identity_key, lookup_by_email)


def normalize_email(raw: str | None) -> str | None:
    cleaned = (raw or "").strip().lower()
    return cleaned or None


class ApplicantResolver:
    """Find-or-create exactly one Applicant per identity. Safe to call repeatedly."""

    def __init__(
        self,
        store: IntakeStore,
        codes: ReferenceCodeGenerator,
        *,
        strategies: Sequence[LookupStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self._store = store
        self._codes = codes
        self._strategies = tuple(strategies)

    async def find(self, identity_key: str | None, email: str | None) -> int | None:
        key = ApplicantKey(identity_key=(identity_key or "").strip() or None, email=normalize_email(email))
        return await self._lookup(key)

    async def _lookup(self, key: ApplicantKey) -> int | None:
        for strategy in self._strategies:
            applicant_id = await strategy(self._store, key)
            if applicant_id is not None:
                return applicant_id
        return None

    async def resolve(
        self,
        identity_key: str | None,
        email: str | None,
        details: ApplicantDetails | None = None,
    ) -> int:
        key = ApplicantKey(identity_key=(identity_key or "").strip() or None, email=normalize_email(email))
        if not key.identity_key and not key.email:
            raise ValidationError("An email address is required to start an application.")

        values = details.applicant_values() if details is not None else {}
        reference_code: str | None = None

        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            applicant_id = await self._lookup(key)
            if applicant_id is not None:
                await self._update_existing(applicant_id, key, values)
                return applicant_id

            if not key.email:
                raise ValidationError("An email address is required to start an application.")

            if reference_code is None:
                reference_code = await self._codes.generate()
            try:
                applicant_id = await self._store.insert_applicant(
                    {
                        **values,
                        "user_id": key.identity_key,
                        "email": key.email,
                        "reference_code": reference_code,
                        "status": PENDING,
                    }
                )
            except ConflictError as exc:
                # Lost a race, or the reference code collided. Re-run the lookups and update instead.
                logger.info(
                    "applicant_insert_conflict",
                    extra={"attempt": attempt, "email": key.email, "constraint": exc.constraint},
                )
                reference_code = temporary_reference_code()
                continue

            logger.info("applicant_created", extra={"applicant_id": applicant_id, "reference_code": reference_code})
            return applicant_id

        raise ConflictError("Could not resolve applicant after repeated conflicts")

    async def _update_existing(self, applicant_id: int, key: ApplicantKey, values: dict[str, Any]) -> None:
        update_values = dict(values)
        if key.identity_key:
            update_values["user_id"] = key.identity_key
        try:
            await self._store.update_applicant(applicant_id, update_values)
        except ConflictError:
            # The identity key already belongs to another row; keep the rest of the update.
            update_values.pop("user_id", None)
            logger.warning(
                "applicant_identity_key_conflict",
                extra={"applicant_id": applicant_id, "identity_key": key.identity_key},
            )
            await self._store.update_applicant(applicant_id, update_values)
