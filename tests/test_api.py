"""Tests for the FastAPI application."""

import io
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from fastapi import status
from openpyxl import load_workbook

from estimate_ingestion.api import create_app
from estimate_ingestion.services.format_detector import XLSX_MIME


@asynccontextmanager
async def create_test_client(
    patches: dict[str, Any] | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Create an async test client with proper lifespan handling.

    Args:
        patches: Optional dictionary of patch targets and values.
    """
    with patch.dict("os.environ", {}, clear=False):
        for target, value in (patches or {}).items():
            patch(target, value).start()
        try:
            app = create_app()
            async with (
                app.router.lifespan_context(app),
                httpx.AsyncClient(
                    transport=httpx.ASGITransport(app=app),
                    base_url="http://test",
                ) as client,
            ):
                client.app = app  # type: ignore[attr-defined]
                yield client
        finally:
            patch.stopall()


@pytest.fixture
async def client() -> AsyncIterator[httpx.AsyncClient]:
    """Create an async test client for the FastAPI application."""
    async with create_test_client() as ac:
        yield ac


def upload(content: bytes, filename: str = "estimate.xlsx") -> dict[str, Any]:
    """Multipart payload for the parse endpoint."""
    return {"file": (filename, content, "application/octet-stream")}


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    async def test_health_check_returns_200(self, client: httpx.AsyncClient) -> None:
        """Test that health check returns 200 status code."""
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_health_check_response_structure(
        self, client: httpx.AsyncClient
    ) -> None:
        """Test that health check returns status, timestamp and version."""
        response = await client.get("/health")
        data = response.json()

        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert isinstance(datetime.fromisoformat(data["timestamp"]), datetime)

    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        """Test that a caller supplied request ID is returned."""
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_is_generated(self, client: httpx.AsyncClient) -> None:
        """Test that a request ID is generated when none is supplied."""
        response = await client.get("/health")

        assert response.headers["X-Request-ID"]


class TestOpenAPIDocumentation:
    """Tests for OpenAPI documentation availability."""

    async def test_openapi_json_available(self, client: httpx.AsyncClient) -> None:
        """Test that OpenAPI JSON schema lists the estimate endpoints."""
        response = await client.get("/openapi.json")
        assert response.status_code == status.HTTP_200_OK

        data = response.json()
        assert data["info"]["title"] == "Estimate Ingestion API"
        assert "/estimates/parse" in data["paths"]
        assert "/estimates/convert" in data["paths"]


class TestParseEndpoint:
    """Tests for the spreadsheet parse endpoint."""

    async def test_parse_matching_estimate(
        self, client: httpx.AsyncClient, scenario_a_xlsx: bytes
    ) -> None:
        """Test that a clean estimate parses with a reconciled summary."""
        response = await client.post(
            "/estimates/parse", files=upload(scenario_a_xlsx)
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["sheet_name"] == "Estimate"
        assert len(data["line_items"]) == 2
        assert data["line_items"][0]["line_total"] == "3000.00"
        assert data["summary"]["computed_grand_total"] == "3500.00"
        assert data["summary"]["declared_grand_total"] == "3500.00"
        assert data["categories"] == ["Roofing"]
        assert data["diagnostics"] == []
        assert data["metadata"]["file_name"] == "estimate.xlsx"

    async def test_parse_reports_row_errors(
        self, client: httpx.AsyncClient, scenario_c_xlsx: bytes
    ) -> None:
        """Test that row problems are returned as diagnostics, not failures."""
        response = await client.post(
            "/estimates/parse", files=upload(scenario_c_xlsx)
        )

        assert response.status_code == status.HTTP_200_OK
        (diag,) = response.json()["diagnostics"]
        assert diag["severity"] == "error"
        assert diag["row_index"] == 3
        assert diag["code"] == "invalid_number"

    async def test_parse_selected_sheet(
        self,
        client: httpx.AsyncClient,
        make_xlsx: Callable[..., bytes],
        scenario_a_rows: list[list[object]],
    ) -> None:
        """Test that the sheet_name form field picks the worksheet."""
        content = make_xlsx(
            [["Description", "Total"], ["Permit", 125]],
            title="Permits",
            extra_sheets={"Estimate": scenario_a_rows},
        )

        response = await client.post(
            "/estimates/parse",
            files=upload(content),
            data={"sheet_name": "Permits"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["sheet_name"] == "Permits"

    async def test_parse_returns_400_for_plain_text(
        self, client: httpx.AsyncClient, plain_text_bytes: bytes
    ) -> None:
        """Test that non-spreadsheet uploads are rejected."""
        response = await client.post(
            "/estimates/parse",
            files=upload(plain_text_bytes, "notes.txt"),
            headers={"X-Request-ID": "req-400"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        data = response.json()
        assert data["error_code"] == "E1001"
        assert data["request_id"] == "req-400"

    async def test_parse_returns_413_for_large_workbook(
        self, scenario_a_xlsx: bytes
    ) -> None:
        """Test that workbooks over the cell guard are rejected."""
        async with create_test_client(
            {"estimate_ingestion.api.settings.max_cell_count": 5}
        ) as client:
            response = await client.post(
                "/estimates/parse", files=upload(scenario_a_xlsx)
            )

        assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
        data = response.json()
        assert data["error_code"] == "E1002"
        assert data["details"]["unit"] == "cells"

    async def test_parse_returns_422_without_header(
        self, client: httpx.AsyncClient, make_xlsx: Callable[..., bytes]
    ) -> None:
        """Test that sheets without a recognizable header are rejected."""
        content = make_xlsx([["Thank you for your business."]])

        response = await client.post("/estimates/parse", files=upload(content))

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        data = response.json()
        assert data["error_code"] == "E2001"
        assert "template" in data["details"]["hint"]

    async def test_parse_returns_404_for_unknown_sheet(
        self, client: httpx.AsyncClient, scenario_a_xlsx: bytes
    ) -> None:
        """Test that requesting a missing sheet lists the available ones."""
        response = await client.post(
            "/estimates/parse",
            files=upload(scenario_a_xlsx),
            data={"sheet_name": "Bids"},
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        data = response.json()
        assert data["error_code"] == "E2002"
        assert data["details"]["available_sheets"] == ["Estimate"]

    async def test_parse_requires_file(self, client: httpx.AsyncClient) -> None:
        """Test that a request without a file fails validation."""
        response = await client.post("/estimates/parse")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestConvertEndpoint:
    """Tests for converting a previewed result."""

    async def _parse(self, client: httpx.AsyncClient, content: bytes) -> Any:
        response = await client.post("/estimates/parse", files=upload(content))
        assert response.status_code == status.HTTP_200_OK
        return response.json()

    async def test_convert_clean_result(
        self, client: httpx.AsyncClient, scenario_a_xlsx: bytes
    ) -> None:
        """Test that a result without errors converts to builder categories."""
        result = await self._parse(client, scenario_a_xlsx)

        response = await client.post("/estimates/convert", json={"result": result})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == "3500.00"
        assert data["item_count"] == 2
        (category,) = data["categories"]
        assert category["name"] == "Roofing"
        assert category["code"] == "RFG"
        assert [item["id"] for item in category["line_items"]] == [
            "item-2",
            "item-3",
        ]

    async def test_convert_returns_409_when_blocked(
        self, client: httpx.AsyncClient, scenario_c_xlsx: bytes
    ) -> None:
        """Test that ERROR diagnostics block conversion."""
        result = await self._parse(client, scenario_c_xlsx)

        response = await client.post("/estimates/convert", json={"result": result})

        assert response.status_code == status.HTTP_409_CONFLICT
        data = response.json()
        assert data["error_code"] == "E3001"
        assert data["details"]["blocking_rows"] == [3]

    async def test_convert_with_excluded_rows(
        self, client: httpx.AsyncClient, scenario_c_xlsx: bytes
    ) -> None:
        """Test that excluding the offending row unblocks conversion."""
        result = await self._parse(client, scenario_c_xlsx)

        response = await client.post(
            "/estimates/convert",
            json={
                "result": result,
                "excluded_rows": [3],
                "category_overrides": {"2": "Gutters"},
            },
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [category["name"] for category in data["categories"]] == [
            "Roofing",
            "Gutters",
        ]
        assert data["total"] == "3500.00"

    async def test_convert_rejects_malformed_result(
        self, client: httpx.AsyncClient
    ) -> None:
        """Test that a body that is not a parse result fails validation."""
        response = await client.post(
            "/estimates/convert", json={"result": {"sheet_name": "Estimate"}}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestTemplateEndpoint:
    """Tests for the template download."""

    async def test_download_template(self, client: httpx.AsyncClient) -> None:
        """Test that the template is an xlsx attachment with a header row."""
        response = await client.get("/estimates/template")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith(XLSX_MIME)
        assert "estimate-template.xlsx" in response.headers["content-disposition"]

        ws = load_workbook(io.BytesIO(response.content)).active
        assert ws["B1"].value == "Description"
