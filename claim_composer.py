#!/usr/bin/env python3
"""
Claim Composer
Holds an in-progress SPJ claim, keeps its total in step with every edit,
validates it and hands the finished payload to a submitter.
"""

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from database_pool import ClaimStoreError, CreatedClaim
from validators import (
    ActivityType, BasicInfo, ClaimSubmission, FundingSource, PaymentMethod, TransportMode,
    COST_COMPONENT_FIELDS, DOCUMENT_FIELDS, MAX_COMPANIES, MAX_TEAM_MEMBERS,
    format_errors, validate_request_data,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to submit SPJ. Please try again."


class CollectionLimitError(ValueError):
    """A bounded collection (team members, companies) is already full."""


class SubmissionError(Exception):
    """The submitter could not store the claim."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = errors or {}


@dataclass
class SubmissionResult:
    success: bool
    spj_id: Optional[int] = None
    no_spj: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    message: str = ''


@dataclass
class ClaimDraft:
    """Form state of one unsaved claim, as the user typed it."""
    basic_info: Dict[str, Any]
    tim: List[Dict[str, Any]]
    perusahaan: List[Dict[str, Any]]
    transport_details: List[Dict[str, Any]]
    penginapan_details: List[Dict[str, Any]]
    komponen: Dict[str, Any]
    dokumen: Dict[str, Any]


def blank_team_member() -> Dict[str, Any]:
    return {'nama': '', 'jabatan': '', 'golongan': '', 'unit_kerja': ''}


def default_draft(unit_organisasi: str = 'Balai K3 Samarinda') -> ClaimDraft:
    return ClaimDraft(
        basic_info={
            'sumber_anggaran': FundingSource.DIPA.value,
            'jenis_kegiatan': ActivityType.PERJALANAN_DINAS.value,
            'metode_pembayaran': PaymentMethod.TRANSFER.value,
            'lama_perjalanan': 1,
            'no_spt': '',
            'tujuan': '',
            'tanggal_berangkat': '',
            'tanggal_pulang': '',
            'provinsi_tujuan': '',
            'unit_organisasi': unit_organisasi,
            'representasi': 0,
        },
        tim=[blank_team_member()],
        perusahaan=[],
        transport_details=[],
        penginapan_details=[],
        komponen={name: 0 for name in COST_COMPONENT_FIELDS},
        dokumen={name: '' for name in DOCUMENT_FIELDS},
    )


def _to_number(value: Any) -> float:
    """Absent, blank or non-numeric values count as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def compute_total(draft: ClaimDraft) -> float:
    """
    Transport fares + lodging tariffs + all cost components + representasi.

    Lodging ``tarif`` is a line total and is not multiplied by
    ``jumlah_hari``. Components hidden for the activity type still count.
    """
    transport = sum(_to_number(leg.get('tarif')) for leg in draft.transport_details)
    lodging = sum(_to_number(block.get('tarif')) for block in draft.penginapan_details)
    components = sum(_to_number(draft.komponen.get(name)) for name in COST_COMPONENT_FIELDS)
    return transport + lodging + components + _to_number(draft.basic_info.get('representasi'))


@dataclass
class DocumentStatus:
    field: str
    label: str
    required: bool
    shown: bool
    attached: bool


DOCUMENT_LABELS = {
    'file_spt': 'SPT (Surat Perintah Tugas)',
    'file_rincian': 'Rincian Pembayaran',
    'file_sppd': 'SPPD',
    'file_sptjm': 'SPTJM',
    'file_kwitansi': 'Kwitansi Transport & Hotel',
    'file_laporan_perjadin': 'Laporan Perjadin',
    'file_surat_penawaran': 'Surat Penawaran',
}

ALWAYS_REQUIRED_DOCUMENTS = ('file_spt', 'file_rincian', 'file_sppd', 'file_laporan_perjadin')


def document_checklist(basic_info: Dict[str, Any], dokumen: Dict[str, Any]) -> List[DocumentStatus]:
    """Advisory attached/missing status of the seven supporting documents."""
    is_pnbp = basic_info.get('sumber_anggaran') == FundingSource.PNBP.value
    is_kkp = basic_info.get('metode_pembayaran') == PaymentMethod.KKP.value

    checklist = []
    for name in DOCUMENT_FIELDS:
        if name in ALWAYS_REQUIRED_DOCUMENTS:
            required, shown = True, True
        elif name == 'file_sptjm':
            required, shown = is_pnbp, is_pnbp
        elif name == 'file_kwitansi':
            required, shown = not is_kkp, not is_kkp
        else:
            required, shown = False, True
        link = dokumen.get(name)
        checklist.append(DocumentStatus(
            field=name,
            label=DOCUMENT_LABELS[name],
            required=required,
            shown=shown,
            attached=bool(link and str(link).strip()),
        ))
    return checklist


TRAVEL_COMPONENTS = ('uang_harian', 'penginapan', 'transport_pp', 'transport_lokal', 'bbm', 'tol')

EDITABLE_COMPONENTS = {
    ActivityType.PERJALANAN_DINAS.value: TRAVEL_COMPONENTS,
    ActivityType.PENGUJIAN.value: TRAVEL_COMPONENTS,
    ActivityType.PELATIHAN.value: ('biaya_pendaftaran', 'konsumsi'),
    ActivityType.DIKLAT.value: ('biaya_pendaftaran', 'konsumsi'),
    ActivityType.KEGIATAN_DALAM_KANTOR.value: ('honorarium', 'konsumsi'),
    ActivityType.RAPAT.value: (),
}

TRAVEL_SECTIONS = ('transport', 'penginapan', 'perusahaan')


def editable_components(jenis_kegiatan: Optional[str]) -> tuple:
    """Cost components the form offers for an activity type."""
    return EDITABLE_COMPONENTS.get(jenis_kegiatan, ())


def visible_sections(jenis_kegiatan: Optional[str]) -> tuple:
    """Optional form sections shown for an activity type; team and documents are always shown."""
    if jenis_kegiatan in (ActivityType.PERJALANAN_DINAS.value, ActivityType.PENGUJIAN.value):
        return TRAVEL_SECTIONS
    return ()


class ClaimSubmitter:
    """Stores a wire payload and returns the new claim's identifiers."""

    def submit(self, payload: Dict[str, Any]) -> CreatedClaim:
        raise NotImplementedError


class HttpClaimSubmitter(ClaimSubmitter):
    """Posts the payload to a running SPJ server."""

    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def submit(self, payload: Dict[str, Any]) -> CreatedClaim:
        url = f"{self.base_url}/api/spj"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"SPJ submission to {url} failed: {e}")
            raise SubmissionError("Could not reach the SPJ server") from e

        if response.status_code not in (200, 201):
            errors = {}
            try:
                errors = response.json().get('details', {}).get('validation_errors', {}) or {}
            except (ValueError, AttributeError):
                pass
            logger.error(f"SPJ submission rejected with HTTP {response.status_code}")
            raise SubmissionError(f"Server returned HTTP {response.status_code}", errors=errors)

        try:
            data = response.json()['data']
            return CreatedClaim(id=int(data['id']), no_spj=str(data['no_spj']))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unexpected response body from {url}: {e}")
            raise SubmissionError("Unexpected response from the SPJ server") from e


class ServiceClaimSubmitter(ClaimSubmitter):
    """Stores the payload in-process through the claim service."""

    def __init__(self, service, actor: str):
        self.service = service
        self.actor = actor

    def submit(self, payload: Dict[str, Any]) -> CreatedClaim:
        try:
            claim = ClaimSubmission.model_validate(payload)
        except ValidationError as e:
            raise SubmissionError("Invalid SPJ payload", errors=format_errors(e)) from e

        try:
            return self.service.create_claim(claim, self.actor)
        except (ClaimStoreError, ValueError) as e:
            raise SubmissionError(str(e)) from e
        except Exception as e:
            logger.error(f"Unexpected error storing SPJ: {e}", exc_info=True)
            raise SubmissionError("Failed to store SPJ") from e


class ClaimComposer:
    """
    Mutable claim form with a derived total.

    Every mutating method re-derives ``total`` before returning, so the
    total always matches the current draft.
    """

    def __init__(self, submitter: ClaimSubmitter = None, draft: ClaimDraft = None,
                 unit_organisasi: str = 'Balai K3 Samarinda'):
        self.submitter = submitter
        self.unit_organisasi = unit_organisasi
        self.draft = draft or default_draft(unit_organisasi)
        self.total = 0.0
        self._recompute()

    def _recompute(self):
        self.total = compute_total(self.draft)

    def reset(self):
        """Start over from an empty form."""
        self.draft = default_draft(self.unit_organisasi)
        self._recompute()

    # Basic info

    def update_basic_info(self, **fields):
        unknown = set(fields) - set(BasicInfo.model_fields)
        if unknown:
            raise ValueError(f"Unknown basic info field(s): {', '.join(sorted(unknown))}")
        self.draft.basic_info.update(fields)
        self._recompute()

    # Team members

    def add_team_member(self, **fields) -> int:
        if len(self.draft.tim) >= MAX_TEAM_MEMBERS:
            raise CollectionLimitError(f"A claim can have at most {MAX_TEAM_MEMBERS} team members")
        member = blank_team_member()
        member.update(fields)
        self.draft.tim.append(member)
        self._recompute()
        return len(self.draft.tim) - 1

    def update_team_member(self, index: int, **fields):
        self.draft.tim[index].update(fields)
        self._recompute()

    def remove_team_member(self, index: int):
        del self.draft.tim[index]
        self._recompute()

    # Inspected companies

    def add_company(self, nama_perusahaan: str = '') -> int:
        if len(self.draft.perusahaan) >= MAX_COMPANIES:
            raise CollectionLimitError(f"A claim can have at most {MAX_COMPANIES} companies")
        self.draft.perusahaan.append({'nama_perusahaan': nama_perusahaan})
        self._recompute()
        return len(self.draft.perusahaan) - 1

    def update_company(self, index: int, nama_perusahaan: str):
        self.draft.perusahaan[index]['nama_perusahaan'] = nama_perusahaan
        self._recompute()

    def remove_company(self, index: int):
        del self.draft.perusahaan[index]
        self._recompute()

    # Transport legs

    def add_transport(self, **fields) -> int:
        leg = {'jenis': TransportMode.RODA_4.value, 'nomor_tiket': '', 'maskapai': '', 'tarif': 0}
        leg.update(fields)
        self.draft.transport_details.append(leg)
        self._recompute()
        return len(self.draft.transport_details) - 1

    def update_transport(self, index: int, **fields):
        self.draft.transport_details[index].update(fields)
        self._recompute()

    def remove_transport(self, index: int):
        del self.draft.transport_details[index]
        self._recompute()

    # Lodging

    def add_lodging(self, **fields) -> int:
        block = {'nama_hotel': '', 'jumlah_hari': 1, 'tarif': 0, 'is_30_percent': False}
        block.update(fields)
        self.draft.penginapan_details.append(block)
        self._recompute()
        return len(self.draft.penginapan_details) - 1

    def update_lodging(self, index: int, **fields):
        self.draft.penginapan_details[index].update(fields)
        self._recompute()

    def remove_lodging(self, index: int):
        del self.draft.penginapan_details[index]
        self._recompute()

    # Components and documents

    def set_component(self, name: str, value: Any):
        if name not in COST_COMPONENT_FIELDS:
            raise ValueError(f"Unknown cost component: {name}")
        self.draft.komponen[name] = value
        self._recompute()

    def set_document(self, name: str, link: Optional[str]):
        if name not in DOCUMENT_FIELDS:
            raise ValueError(f"Unknown document: {name}")
        self.draft.dokumen[name] = link
        self._recompute()

    # Derived views

    def document_checklist(self) -> List[DocumentStatus]:
        return document_checklist(self.draft.basic_info, self.draft.dokumen)

    def editable_components(self) -> tuple:
        return editable_components(self.draft.basic_info.get('jenis_kegiatan'))

    def visible_sections(self) -> tuple:
        return visible_sections(self.draft.basic_info.get('jenis_kegiatan'))

    def to_payload(self) -> Dict[str, Any]:
        """The create payload, with the current total."""
        return {
            'basicInfo': copy.deepcopy(self.draft.basic_info),
            'tim': copy.deepcopy(self.draft.tim),
            'perusahaan': copy.deepcopy(self.draft.perusahaan),
            'transportDetails': copy.deepcopy(self.draft.transport_details),
            'penginapanDetails': copy.deepcopy(self.draft.penginapan_details),
            'komponen': copy.deepcopy(self.draft.komponen),
            'dokumen': copy.deepcopy(self.draft.dokumen),
            'total_biaya': self.total,
        }

    def validate(self) -> Dict[str, str]:
        """Field errors keyed by dotted payload path; empty when the draft is valid."""
        is_valid, _, errors = validate_request_data(self.to_payload(), ClaimSubmission)
        return {} if is_valid else errors

    def submit(self) -> SubmissionResult:
        """
        Validate, then hand the payload to the submitter.

        An invalid draft never reaches the submitter. On any failure the
        draft is left untouched so the user can retry.
        """
        errors = self.validate()
        if errors:
            return SubmissionResult(success=False, errors=errors, message="Please correct the highlighted fields")

        if self.submitter is None:
            raise RuntimeError("ClaimComposer has no submitter configured")

        try:
            created = self.submitter.submit(self.to_payload())
        except SubmissionError as e:
            logger.error(f"SPJ submission failed: {e}")
            return SubmissionResult(success=False, errors=e.errors, message=GENERIC_FAILURE_MESSAGE)

        logger.info(f"Submitted SPJ {created.no_spj} (id={created.id})")
        return SubmissionResult(success=True, spj_id=created.id, no_spj=created.no_spj,
                                message="SPJ submitted")
