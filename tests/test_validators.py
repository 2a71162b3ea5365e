#!/usr/bin/env python3
"""
Validation Model Tests
Tests the claim payload models, sanitizing and error flattening.
"""

import pytest
from pydantic import ValidationError

from validators import (
    ActivityType, ClaimSubmission, FundingSource, LoginRequest, PaymentMethod, TransportMode,
    format_errors, validate_request_data,
)


def errors_for(payload):
    with pytest.raises(ValidationError) as exc_info:
        ClaimSubmission.model_validate(payload)
    return format_errors(exc_info.value)


class TestClaimSubmission:
    """Test parsing of the create payload."""

    def test_valid_payload(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory())

        assert claim.basic_info.no_spt == 'SPT/015/BK3/2024'
        assert claim.basic_info.sumber_anggaran is FundingSource.DIPA
        assert claim.basic_info.jenis_kegiatan is ActivityType.PERJALANAN_DINAS
        assert claim.basic_info.metode_pembayaran is PaymentMethod.TRANSFER
        assert claim.transport_details[0].jenis is TransportMode.PESAWAT
        assert claim.penginapan_details[0].tarif == 300000
        assert claim.total_biaya == 1600000

    def test_field_names_accepted_as_well_as_aliases(self, payload_factory):
        payload = payload_factory()
        payload['basic_info'] = payload.pop('basicInfo')
        payload['transport_details'] = payload.pop('transportDetails')

        claim = ClaimSubmission.model_validate(payload)

        assert len(claim.transport_details) == 2

    def test_defaults_for_minimal_payload(self):
        claim = ClaimSubmission.model_validate({'basicInfo': {
            'no_spt': 'SPT/1', 'jenis_kegiatan': 'Rapat', 'tanggal_berangkat': '2024-05-01',
            'tanggal_pulang': '2024-05-01', 'tujuan': 'Samarinda',
        }})

        assert claim.basic_info.sumber_anggaran is FundingSource.DIPA
        assert claim.basic_info.metode_pembayaran is PaymentMethod.TRANSFER
        assert claim.basic_info.lama_perjalanan == 1
        assert claim.basic_info.representasi == 0
        assert claim.tim == [] and claim.perusahaan == []
        assert claim.komponen.uang_harian == 0 and claim.komponen.tol == 0
        assert claim.dokumen.file_spt is None
        assert claim.total_biaya == 0

    def test_null_collections_become_empty(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory(tim=None, transportDetails=None))

        assert claim.tim == []
        assert claim.transport_details == []

    def test_blank_currency_values_are_zero(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory(
            {'representasi': ''},
            transportDetails=[{'jenis': 'Kereta', 'tarif': ''}],
            komponen={'bbm': None, 'tol': ''},
        ))

        assert claim.basic_info.representasi == 0
        assert claim.transport_details[0].tarif == 0
        assert claim.komponen.bbm == 0 and claim.komponen.tol == 0

    def test_blank_optional_text_is_none(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory({'no_sppd': '  ', 'metode_bayar_hotel': ''}))

        assert claim.basic_info.no_sppd is None
        assert claim.basic_info.metode_bayar_hotel is None


class TestFieldErrors:
    """Test the per-field error contract."""

    def test_required_text(self, payload_factory):
        errors = errors_for(payload_factory({'no_spt': '', 'tujuan': None}))

        assert errors['basicInfo.no_spt'] == 'Field is required'
        assert errors['basicInfo.tujuan'] == 'Field is required'

    def test_missing_basic_info(self):
        assert 'basicInfo' in errors_for({'tim': []})

    def test_dates(self, payload_factory):
        errors = errors_for(payload_factory({'tanggal_berangkat': '', 'tanggal_pulang': '06/03/2024'}))

        assert errors['basicInfo.tanggal_berangkat'] == 'Date is required'
        assert 'YYYY-MM-DD' in errors['basicInfo.tanggal_pulang']

    def test_unknown_enum_values(self, payload_factory):
        errors = errors_for(payload_factory(
            {'sumber_anggaran': 'APBD', 'jenis_kegiatan': 'Liburan', 'metode_bayar_transport': 'Cek'},
            transportDetails=[{'jenis': 'Kapal'}],
        ))

        assert 'basicInfo.sumber_anggaran' in errors
        assert 'basicInfo.jenis_kegiatan' in errors
        assert 'basicInfo.metode_bayar_transport' in errors
        assert 'transportDetails.0.jenis' in errors

    def test_trip_length(self, payload_factory):
        assert 'basicInfo.lama_perjalanan' in errors_for(payload_factory({'lama_perjalanan': 0}))

    def test_negative_amounts(self, payload_factory):
        errors = errors_for(payload_factory({'representasi': -1}, penginapanDetails=[{'tarif': -100}]))

        assert 'basicInfo.representasi' in errors
        assert 'penginapanDetails.0.tarif' in errors

    def test_negative_cost_component(self, payload_factory):
        komponen = dict(payload_factory()['komponen'], konsumsi=-5000)

        assert 'komponen.konsumsi' in errors_for(payload_factory(komponen=komponen))

    @pytest.mark.parametrize('value', [True, 'nan', 'inf', float('inf')])
    def test_non_finite_and_boolean_amounts(self, payload_factory, value):
        komponen = dict(payload_factory()['komponen'], bbm=value)

        errors = errors_for(payload_factory(
            {'representasi': value},
            komponen=komponen,
            transportDetails=[{'jenis': 'Pesawat', 'tarif': value}],
        ))

        assert 'basicInfo.representasi' in errors
        assert 'komponen.bbm' in errors
        assert 'transportDetails.0.tarif' in errors

    def test_too_many_team_members(self, payload_factory):
        errors = errors_for(payload_factory(tim=[{'nama': f'Anggota {i}'} for i in range(7)]))

        assert 'tim' in errors

    def test_six_team_members_allowed(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory(tim=[{'nama': f'Anggota {i}'} for i in range(6)]))

        assert len(claim.tim) == 6

    def test_too_many_companies(self, payload_factory):
        errors = errors_for(payload_factory(perusahaan=[{'nama_perusahaan': f'PT {i}'} for i in range(11)]))

        assert 'perusahaan' in errors

    def test_nested_names(self, payload_factory):
        errors = errors_for(payload_factory(tim=[{'nama': 'Andi'}, {'nama': ''}],
                                            perusahaan=[{'nama_perusahaan': '  '}]))

        assert errors == {
            'tim.1.nama': 'Name is required',
            'perusahaan.0.nama_perusahaan': 'Company name is required',
        }


@pytest.mark.security
class TestSanitizing:
    """Free text is stripped of markup."""

    def test_html_tags_removed(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory(
            {'tujuan': '<script>alert(1)</script>Balikpapan'},
            tim=[{'nama': '<b>Andi</b> Pratama'}],
        ))

        assert '<' not in claim.basic_info.tujuan
        assert claim.basic_info.tujuan.endswith('Balikpapan')
        assert claim.tim[0].nama == 'Andi Pratama'

    def test_ampersand_kept(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory(perusahaan=[{'nama_perusahaan': 'PT Maju & Jaya'}]))

        assert claim.perusahaan[0].nama_perusahaan == 'PT Maju & Jaya'

    def test_long_text_truncated(self, payload_factory):
        claim = ClaimSubmission.model_validate(payload_factory({'tujuan': 'x' * 500}))

        assert len(claim.basic_info.tujuan) == 200


class TestHelpers:

    def test_validate_request_data(self, payload_factory):
        ok, claim, errors = validate_request_data(payload_factory(), ClaimSubmission)
        assert ok and errors is None
        assert isinstance(claim, ClaimSubmission)

        ok, claim, errors = validate_request_data(payload_factory({'no_spt': ''}), ClaimSubmission)
        assert not ok and claim is None
        assert errors == {'basicInfo.no_spt': 'Field is required'}

    def test_login_request(self):
        assert LoginRequest.model_validate({'username': ' admin ', 'password': 'x'}).username == 'admin'

        with pytest.raises(ValidationError):
            LoginRequest.model_validate({'username': '', 'password': 'x'})
