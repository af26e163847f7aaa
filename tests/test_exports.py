import csv
import io

from app.contacthub.exports import (
    CONTACT_CSV_HEADERS,
    changelog_to_csv,
    contact_to_vcard,
    contacts_to_csv,
    vcard_filename,
)


def _contact(**overrides):
    c = {
        "id": 1,
        "first_name": "Juan",
        "middle_name": "Santos",
        "last_name": "Dela Cruz",
        "birthday": "1990-01-15",
        "phone": "+63 917 123 4567",
        "company": "Acme, Inc.",
        "owner_name": "Alice Agent",
        "created_at": "2025-01-02T08:30:00.123456",
    }
    c.update(overrides)
    return c


def test_contacts_csv_has_header_plus_one_line_per_contact():
    contacts = [_contact(id=i, first_name=f"Name{i}") for i in range(5)]
    text = contacts_to_csv(contacts)
    lines = text.split("\n")
    assert len(lines) == 6
    assert lines[0] == ",".join(f'"{h}"' for h in CONTACT_CSV_HEADERS)


def test_contacts_csv_fields_quoted_and_verbatim():
    c = _contact(last_name='O"Brien', middle_name=None)
    text = contacts_to_csv([c])
    assert text.split("\n")[1] == (
        '"Juan","","O""Brien","1990-01-15","+63 917 123 4567","Acme, Inc.","Alice Agent","2025-01-02"'
    )
    row = list(csv.reader(io.StringIO(text)))[1]
    assert row[2] == 'O"Brien'
    assert row[5] == "Acme, Inc."


def test_empty_export_is_just_the_header():
    assert contacts_to_csv([]).split("\n") == [",".join(f'"{h}"' for h in CONTACT_CSV_HEADERS)]


def test_changelog_csv_summary_without_filters():
    entries = [
        {"timestamp": "2025-01-01T00:00:00", "user_id": 1, "user_name": "A", "user_role": "user", "action": "login", "entity": "system", "entity_id": "1", "entity_name": "A", "description": "A logged in", "details": ""},
    ]
    text = changelog_to_csv(entries, total=10)
    head, body = text.split("\n\n", 1)
    assert head == "Export Type: All filtered entries\nTotal Records: 1"
    assert body.split("\n")[0].startswith('"Timestamp","User ID"')
    assert len(body.split("\n")) == 2


def test_changelog_csv_summary_with_filters_and_selection():
    entries = [{"description": "x"}, {"description": "y"}]
    text = changelog_to_csv(entries, total=40, active_filters=['Search: "ann"', "Action: create"], selected=True)
    assert text.startswith(
        "Export Type: Selected 2 entries\n"
        'Filters Applied: Search: "ann", Action: create\n'
        "Total Exported Records: 2 of 40\n\n"
    )


def test_changelog_csv_summary_notes_truncation():
    text = changelog_to_csv([{"description": "x"}], total=9000, loaded=5000)
    assert text.startswith("Export Type: All filtered entries\nTotal Records: 1\nTruncated: only the newest 5000 of 9000 log entries were searched\n\n")
    assert "Truncated" not in changelog_to_csv([{"description": "x"}], total=1, loaded=1)


def test_vcard_layout():
    card = contact_to_vcard(_contact())
    assert card.split("\r\n") == [
        "BEGIN:VCARD",
        "VERSION:3.0",
        "FN:Juan Santos Dela Cruz",
        "N:Dela Cruz;Juan;Santos;;",
        "ORG:Acme\\, Inc.",
        "TEL:+63 917 123 4567",
        "BDAY:19900115",
        "END:VCARD",
        "",
    ]


def test_vcard_omits_empty_optional_fields():
    card = contact_to_vcard(_contact(company="", phone="", middle_name="", birthday=""))
    assert "ORG:" not in card
    assert "TEL:" not in card
    assert "BDAY:" not in card
    assert "FN:Juan Dela Cruz\r\n" in card


def test_vcard_filename():
    assert vcard_filename(_contact()) == "Juan_Dela_Cruz.vcf"
    assert vcard_filename({"first_name": "", "last_name": ""}) == "contact.vcf"
