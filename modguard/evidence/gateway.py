"""Outbound submission of law-enforcement reports.

The engine only depends on the :class:`AgencyGateway` protocol. The HTTP
implementation posts the case to a per-agency endpoint with ``httpx``.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol

import httpx

from modguard.errors import DependencyUnavailable
from modguard.models.base import to_dict
from modguard.models.cases import LawEnforcementReport, SubmissionResult

logger = logging.getLogger(__name__)


class AgencyGateway(Protocol):
    def submit(self, report: LawEnforcementReport) -> SubmissionResult:
        ...


class HttpAgencyGateway:
    """POSTs cases as JSON to ``endpoints[agency]`` (or ``endpoints["default"]``).

    The bearer token is read from ``MODGUARD_AGENCY_TOKEN`` when not given.
    """

    def __init__(
        self,
        endpoints: dict[str, str],
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._endpoints = endpoints
        self._token = token or os.environ.get("MODGUARD_AGENCY_TOKEN", "")
        self._client = client or httpx.Client(timeout=timeout)

    def submit(self, report: LawEnforcementReport) -> SubmissionResult:
        agency = report.external_agency.value
        url = self._endpoints.get(agency) or self._endpoints.get("default")
        if not url:
            return SubmissionResult(
                success=False,
                response_code="no_endpoint",
                response_message=f"no submission endpoint configured for {agency}",
                submission_method="api",
            )

        headers = {"Accept": "application/json", "X-Case-Id": report.case_id}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        payload = {
            "case_id": report.case_id,
            "urgency": report.urgency.value,
            "threat_categories": report.threat_categories,
            "risk_score": report.risk_score,
            "report_data": to_dict(report.report_data),
            "preservation_notice": to_dict(report.preservation_notice)
            if report.preservation_notice
            else None,
        }

        try:
            resp = self._client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise DependencyUnavailable(f"agency endpoint unreachable: {exc}") from exc

        if resp.is_success:
            data = resp.json() if resp.content else {}
            return SubmissionResult(
                success=True,
                response_code=str(resp.status_code),
                response_message=str(data.get("message", "")),
                confirmation_number=str(data.get("confirmation_number", "")),
                submission_method="api",
            )
        if resp.status_code >= 500:
            raise DependencyUnavailable(f"agency endpoint returned {resp.status_code}")

        logger.warning(
            "Agency rejected submission",
            extra={"case_id": report.case_id, "status": resp.status_code},
        )
        return SubmissionResult(
            success=False,
            response_code=str(resp.status_code),
            response_message=resp.text[:2000],
            submission_method="api",
        )
