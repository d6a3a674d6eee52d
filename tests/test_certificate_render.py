from datetime import datetime
from io import BytesIO

import pytest
from PyPDF2 import PdfReader

from portal.shared.certificates import (
    certificate_filename,
    load_template,
    overlay_texts,
    render_certificate,
)
from portal.shared.certificates_layout import CertificateLayout, place_field
from portal.shared.errors import TemplateError, ValidationError
from portal.shared.time import fmt_long_date

from factories import make_template_pdf

pytestmark = pytest.mark.no_smoke


def _layout():
    layout = place_field(CertificateLayout(), "name", 300, 250, 1)
    return place_field(layout, "date", 300, 400, 1)


def test_overlay_flips_y_from_top_edge():
    runs = overlay_texts(_layout(), 595, "Asha Rao", "Tree Plantation", datetime(2025, 3, 5, 12))
    by_field = {run.field: run for run in runs}
    assert set(by_field) == {"name", "date"}
    assert by_field["name"].y == 595 - 250
    assert by_field["name"].x == 300
    assert by_field["name"].text == "Asha Rao"
    assert by_field["name"].font_size == 24
    assert by_field["date"].text == "March 5, 2025"
    assert by_field["date"].y == 195


def test_render_stamps_name_and_keeps_size():
    pdf = render_certificate(
        make_template_pdf(842, 595),
        _layout(),
        "Asha Rao",
        "Tree Plantation",
        datetime(2025, 3, 5),
    )
    reader = PdfReader(BytesIO(pdf))
    assert len(reader.pages) == 1
    page = reader.pages[0]
    assert float(page.mediabox.width) == 842
    assert float(page.mediabox.height) == 595
    text = page.extract_text()
    assert "Asha Rao" in text
    assert "March 5, 2025" in text
    assert "Certificate of Participation" in text


def test_render_keeps_extra_pages():
    pdf = render_certificate(
        make_template_pdf(pages=3), _layout(), "Asha Rao", "Drive", datetime(2025, 1, 1)
    )
    assert len(PdfReader(BytesIO(pdf)).pages) == 3


def test_render_without_placed_fields_returns_template_page():
    pdf = render_certificate(
        make_template_pdf(), CertificateLayout(), "Asha Rao", "Drive", None
    )
    assert "Asha Rao" not in PdfReader(BytesIO(pdf)).pages[0].extract_text()


@pytest.mark.parametrize("data", [b"", b"not a pdf at all"])
def test_unreadable_template_raises(data):
    with pytest.raises(TemplateError) as excinfo:
        load_template(data)
    assert isinstance(excinfo.value, ValueError)
    assert excinfo.value.status_code == 422


def test_template_error_is_not_a_validation_error():
    with pytest.raises(TemplateError) as excinfo:
        load_template(b"")
    assert not isinstance(excinfo.value, ValidationError)


def test_certificate_filename():
    assert certificate_filename("Asha Rao", "Tree Plantation Drive") == (
        "Certificate_Asha_Rao_Tree_Plantation_Drive.pdf"
    )
    assert certificate_filename("O'Brien", "Blood/Donation") == (
        "Certificate_OBrien_BloodDonation.pdf"
    )


def test_fmt_long_date():
    assert fmt_long_date(datetime(2025, 3, 5, 18, 30)) == "March 5, 2025"
    assert fmt_long_date(None) == ""
