"""Target environment (account + region) threaded through plan and apply."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Environment(BaseModel):
    """Where a unit is provisioned.

    ``None`` fields mean "unspecified"; :meth:`merged` lets a unit override only
    the fields it cares about (e.g. pin ``region`` for a certificate unit).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    account: str | None = None
    region: str | None = None

    def merged(self, override: Environment | None) -> Environment:
        if override is None:
            return self
        return Environment(
            account=override.account if override.account is not None else self.account,
            region=override.region if override.region is not None else self.region,
        )
