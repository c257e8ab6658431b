# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from sheetflow.logging.init import reset_logging
from sheetflow.models.config_models import FieldConfig, SheetConfig, ValidationRule, WorkbookConfig
from sheetflow.services import offload


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.delenv("SHEETFLOW_CHUNK_SIZE", raising=False)
        monkeypatch.delenv("SHEETFLOW_MAPPING_STORE", raising=False)
        yield p


@pytest.fixture(autouse=True)
def _clean_global_state():
    reset_logging()
    offload.configure_offload(None)
    yield
    reset_logging()
    offload.configure_offload(None)


@pytest.fixture()
def sample_config_yaml() -> str:
    return """name: Onboarding
namespace: acme
processing:
  chunk_size: 2
sheets:
  - name: Contacts
    slug: contacts
    fields:
      - key: name
        label: Full Name
        type: string
        required: true
        default_transform: trim
      - key: email
        label: Email Address
        type: email
        required: true
        unique: true
        default_transform: formatEmail
      - key: age
        label: Age
        type: number
        validations:
          - type: min
            value: 18
            message: Must be 18 or older
  - name: Companies
    slug: companies
    fields:
      - key: company
        label: Company Name
        required: true
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "workbook.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def contact_fields() -> tuple[FieldConfig, ...]:
    return (
        FieldConfig(key="name", label="Full Name", required=True, default_transform="trim"),
        FieldConfig(
            key="email",
            label="Email Address",
            type="email",
            required=True,
            unique=True,
            default_transform="formatEmail",
        ),
        FieldConfig(
            key="age",
            label="Age",
            type="number",
            validations=(ValidationRule(type="min", value=18, message="Must be 18 or older"),),
        ),
    )


@pytest.fixture()
def contact_sheet(contact_fields) -> SheetConfig:
    return SheetConfig(name="Contacts", slug="contacts", fields=contact_fields)


@pytest.fixture()
def workbook(contact_sheet) -> WorkbookConfig:
    return WorkbookConfig(name="Onboarding", sheets=(contact_sheet,), namespace="acme")


@pytest.fixture()
def write_csv(temp_workdir: Path):
    def _write(name: str, text: str, encoding: str = "utf-8") -> Path:
        path = temp_workdir / "data" / name
        path.write_text(text, encoding=encoding)
        return path

    return _write


@pytest.fixture()
def contacts_csv(write_csv) -> Path:
    return write_csv(
        "contacts.csv",
        "Full Name,Email Address,Age\n"
        "Alice, ALICE@Example.com ,30\n"
        "Bob,bob@example.com,15\n"
        "Carol,alice@example.com,41\n",
    )
