#!/usr/bin/env python3
"""
Input validation models using Pydantic for the SPJ claim payload.

The same models back the claim composer's inline validation and the
HTTP boundary, so a payload the composer accepts is exactly a payload
the create endpoint accepts.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime
from enum import Enum
from functools import wraps
import html
import logging

import bleach

logger = logging.getLogger(__name__)

MAX_TEAM_MEMBERS = 6
MAX_COMPANIES = 10


class FundingSource(str, Enum):
    DIPA = 'SPJ DIPA'
    PNBP = 'SPJ PNBP'


class ActivityType(str, Enum):
    PERJALANAN_DINAS = 'Perjalanan Dinas'
    PENGUJIAN = 'Pengujian'
    PELATIHAN = 'Pelatihan'
    DIKLAT = 'Diklat'
    RAPAT = 'Rapat'
    KEGIATAN_DALAM_KANTOR = 'Kegiatan Dalam Kantor'


class PaymentMethod(str, Enum):
    TUNAI = 'Tunai'
    TRANSFER = 'Transfer'
    KKP = 'KKP'


class TransportMode(str, Enum):
    RODA_4 = 'Roda 4'
    KERETA = 'Kereta'
    PESAWAT = 'Pesawat'


COST_COMPONENT_FIELDS = (
    'uang_harian', 'penginapan', 'transport_pp', 'transport_lokal',
    'biaya_pendaftaran', 'konsumsi', 'honorarium', 'bbm', 'tol',
)

DOCUMENT_FIELDS = (
    'file_spt', 'file_rincian', 'file_sppd', 'file_sptjm',
    'file_kwitansi', 'file_laporan_perjadin', 'file_surat_penawaran',
)


def _clean_text(value: Optional[str]) -> Optional[str]:
    """Strip whitespace and any HTML tags from free text."""
    if value is None:
        return None
    return html.unescape(bleach.clean(str(value), tags=[], strip=True)).strip()


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _zero_if_absent(value):
    """Absent or blank currency values count as 0; booleans are not amounts."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0
    if isinstance(value, bool):
        raise ValueError("Must be a number")
    return value


class BasicInfo(BaseModel):
    """Scalar attributes of one claim."""
    no_spt: str
    no_sppd: Optional[str] = None
    no_spm: Optional[str] = None
    no_drpp: Optional[str] = None
    kode_mak: Optional[str] = None
    sumber_anggaran: FundingSource = FundingSource.DIPA
    jenis_kegiatan: ActivityType
    metode_pembayaran: PaymentMethod = PaymentMethod.TRANSFER
    metode_bayar_transport: Optional[PaymentMethod] = None
    metode_bayar_hotel: Optional[PaymentMethod] = None
    tanggal_spt: Optional[str] = None
    tanggal_sppd: Optional[str] = None
    tanggal_berangkat: str
    tanggal_pulang: str
    lama_perjalanan: int = Field(default=1, ge=1)
    tujuan: str
    provinsi_tujuan: Optional[str] = None
    unit_organisasi: Optional[str] = None
    representasi: float = Field(default=0, ge=0, allow_inf_nan=False)

    @field_validator('no_spt', 'tujuan', mode='before')
    @classmethod
    def validate_required_text(cls, v):
        """Required text must be non-empty after sanitizing."""
        cleaned = _clean_text(v) if v is not None else ''
        if not cleaned:
            raise ValueError("Field is required")
        return cleaned[:200]

    @field_validator('no_sppd', 'no_spm', 'no_drpp', 'kode_mak', 'provinsi_tujuan', 'unit_organisasi', mode='before')
    @classmethod
    def validate_optional_text(cls, v):
        cleaned = _clean_text(_blank_to_none(v))
        return cleaned[:200] if cleaned else None

    @field_validator('jenis_kegiatan', 'metode_bayar_transport', 'metode_bayar_hotel', mode='before')
    @classmethod
    def validate_blank_choice(cls, v):
        return _blank_to_none(v)

    @field_validator('tanggal_berangkat', 'tanggal_pulang', mode='before')
    @classmethod
    def validate_travel_date(cls, v):
        """Ensure date is present and in YYYY-MM-DD format."""
        if v is None or not str(v).strip():
            raise ValueError("Date is required")
        v = str(v).strip()
        try:
            datetime.strptime(v, '%Y-%m-%d')
        except ValueError:
            raise ValueError(f"Date must be in YYYY-MM-DD format, got: {v}")
        return v

    @field_validator('tanggal_spt', 'tanggal_sppd', mode='before')
    @classmethod
    def validate_optional_date(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            datetime.strptime(str(v).strip(), '%Y-%m-%d')
        except ValueError:
            raise ValueError(f"Date must be in YYYY-MM-DD format, got: {v}")
        return str(v).strip()

    @field_validator('representasi', mode='before')
    @classmethod
    def validate_representasi(cls, v):
        return _zero_if_absent(v)


class TeamMember(BaseModel):
    nama: str
    jabatan: Optional[str] = None
    golongan: Optional[str] = None
    unit_kerja: Optional[str] = None

    @field_validator('nama', mode='before')
    @classmethod
    def validate_nama(cls, v):
        cleaned = _clean_text(v) if v is not None else ''
        if not cleaned:
            raise ValueError("Name is required")
        return cleaned[:200]

    @field_validator('jabatan', 'golongan', 'unit_kerja', mode='before')
    @classmethod
    def validate_optional_text(cls, v):
        return _clean_text(_blank_to_none(v))


class InspectedCompany(BaseModel):
    nama_perusahaan: str

    @field_validator('nama_perusahaan', mode='before')
    @classmethod
    def validate_nama_perusahaan(cls, v):
        cleaned = _clean_text(v) if v is not None else ''
        if not cleaned:
            raise ValueError("Company name is required")
        return cleaned[:200]


class TransportLeg(BaseModel):
    jenis: TransportMode = TransportMode.RODA_4
    nomor_tiket: Optional[str] = None
    maskapai: Optional[str] = None
    tarif: float = Field(default=0, ge=0, allow_inf_nan=False)

    @field_validator('nomor_tiket', 'maskapai', mode='before')
    @classmethod
    def validate_optional_text(cls, v):
        return _clean_text(_blank_to_none(v))

    @field_validator('tarif', mode='before')
    @classmethod
    def validate_tarif(cls, v):
        return _zero_if_absent(v)


class LodgingBlock(BaseModel):
    """One hotel stay; ``tarif`` is the line total, not a nightly rate."""
    nama_hotel: Optional[str] = None
    jumlah_hari: int = Field(default=1, ge=0)
    tarif: float = Field(default=0, ge=0, allow_inf_nan=False)
    is_30_percent: bool = False

    @field_validator('nama_hotel', mode='before')
    @classmethod
    def validate_optional_text(cls, v):
        return _clean_text(_blank_to_none(v))

    @field_validator('jumlah_hari', 'tarif', mode='before')
    @classmethod
    def validate_numbers(cls, v):
        return _zero_if_absent(v)


class CostComponents(BaseModel):
    """Fixed-shape free-form cost components; every field joins the total."""
    uang_harian: float = Field(default=0, ge=0, allow_inf_nan=False)
    penginapan: float = Field(default=0, ge=0, allow_inf_nan=False)
    transport_pp: float = Field(default=0, ge=0, allow_inf_nan=False)
    transport_lokal: float = Field(default=0, ge=0, allow_inf_nan=False)
    biaya_pendaftaran: float = Field(default=0, ge=0, allow_inf_nan=False)
    konsumsi: float = Field(default=0, ge=0, allow_inf_nan=False)
    honorarium: float = Field(default=0, ge=0, allow_inf_nan=False)
    bbm: float = Field(default=0, ge=0, allow_inf_nan=False)
    tol: float = Field(default=0, ge=0, allow_inf_nan=False)

    @field_validator(*COST_COMPONENT_FIELDS, mode='before')
    @classmethod
    def validate_component(cls, v):
        return _zero_if_absent(v)


class SupportingDocuments(BaseModel):
    """Links to supporting paperwork (usually cloud-drive URLs)."""
    file_spt: Optional[str] = None
    file_rincian: Optional[str] = None
    file_sppd: Optional[str] = None
    file_sptjm: Optional[str] = None
    file_kwitansi: Optional[str] = None
    file_laporan_perjadin: Optional[str] = None
    file_surat_penawaran: Optional[str] = None

    @field_validator(*DOCUMENT_FIELDS, mode='before')
    @classmethod
    def validate_link(cls, v):
        v = _blank_to_none(v)
        return str(v).strip()[:1000] if v is not None else None


class ClaimSubmission(BaseModel):
    """The full create payload: basic info, four collections, components, documents, total."""
    model_config = ConfigDict(populate_by_name=True)

    basic_info: BasicInfo = Field(alias='basicInfo')
    tim: List[TeamMember] = Field(default_factory=list, max_length=MAX_TEAM_MEMBERS)
    perusahaan: List[InspectedCompany] = Field(default_factory=list, max_length=MAX_COMPANIES)
    transport_details: List[TransportLeg] = Field(default_factory=list, alias='transportDetails')
    penginapan_details: List[LodgingBlock] = Field(default_factory=list, alias='penginapanDetails')
    komponen: CostComponents = Field(default_factory=CostComponents)
    dokumen: SupportingDocuments = Field(default_factory=SupportingDocuments)
    total_biaya: float = Field(default=0, ge=0, allow_inf_nan=False)

    @field_validator('tim', 'perusahaan', 'transport_details', 'penginapan_details', mode='before')
    @classmethod
    def validate_collection(cls, v):
        return [] if v is None else v

    @field_validator('total_biaya', mode='before')
    @classmethod
    def validate_total(cls, v):
        return _zero_if_absent(v)


class LoginRequest(BaseModel):
    """Validates login form input."""
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=200)

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        return v.strip()


def format_errors(error: ValidationError) -> Dict[str, str]:
    """
    Flatten a pydantic error into ``{dotted.field.path: message}``.

    The first message per field wins, which is what an inline form shows.
    """
    errors: Dict[str, str] = {}
    for item in error.errors():
        path = '.'.join(str(x) for x in item['loc'])
        message = item['msg']
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        errors.setdefault(path, message)
    return errors


def validate_request_data(data: dict, model_class: BaseModel) -> Tuple[bool, Any, Optional[Dict[str, str]]]:
    """
    Generic validation function for request data.

    Returns:
        tuple: (is_valid, validated_data, field_errors)
    """
    try:
        validated = model_class.model_validate(data)
        return True, validated, None
    except ValidationError as e:
        field_errors = format_errors(e)
        logger.warning(f"Validation failed: {'; '.join(f'{k}: {v}' for k, v in field_errors.items())}")
        return False, None, field_errors


# Export validation decorators for Flask routes
def validate_json(model_class: BaseModel):
    """Decorator to validate JSON request data."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            from flask import request
            from api_response import APIResponse

            if not request.is_json:
                return APIResponse.error('Content-Type must be application/json', status_code=400)

            payload = request.get_json(silent=True)
            if not isinstance(payload, dict):
                return APIResponse.error('Request body must be a JSON object', status_code=400)

            is_valid, validated_data, errors = validate_request_data(payload, model_class)

            if not is_valid:
                return APIResponse.validation_error(errors)

            # Inject validated data into the function
            request.validated_data = validated_data
            return f(*args, **kwargs)

        return wrapper
    return decorator
