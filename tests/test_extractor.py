from leadbot.extractor import extract, extract_identifiers


def test_scenario_message_extracts_contact_amount_and_urgency():
    fields = extract("Name: Ramesh, Phone: 9876543210, Loan amount 150000, urgent")

    assert fields.name == "Ramesh"
    assert fields.phone == "9876543210"
    assert fields.amount == 150000
    assert fields.urgency is True


def test_greeting_extracts_nothing():
    assert extract("Good morning team").to_dict() == {}


def test_empty_text_never_raises():
    assert extract("").to_dict() == {}
    assert extract("   ").to_dict() == {}


def test_extract_is_idempotent():
    text = "Customer name Priya, mail: priya.s@example.com, 2 lakh home loan, Jayanagar branch"
    assert extract(text) == extract(text)


def test_k_suffix_multiplies_by_thousand():
    assert extract("Loan amount 50k for Rahul").amount == 50000


def test_indian_digit_grouping_is_stripped():
    assert extract("Amount: Rs 1,50,000").amount == 150000


def test_phone_country_code_is_dropped():
    assert extract("Contact +91 98765 43210").phone == "9876543210"


def test_labeled_phone_wins_over_bare_number():
    fields = extract("Ph: 9123456789, alt 9876543210")
    assert fields.phone == "9123456789"


def test_bare_phone_is_not_read_as_amount():
    fields = extract("9876543210 needs 2 lakh")
    assert fields.phone == "9876543210"
    assert fields.amount == 200000


def test_email_is_lowercased():
    assert extract("mail: Priya.S@Example.com").email == "priya.s@example.com"


def test_pan_is_captured_as_government_id():
    assert extract("PAN: ABCDE1234F").government_id == "ABCDE1234F"


def test_opportunity_code_keeps_type_and_code_apart():
    fields = extract("OPP 784512 disbursed")
    assert fields.opp_id == "784512"
    assert fields.identifier_type == "OPP"


def test_purpose_and_location():
    fields = extract("Customer wants home loan at Jayanagar branch Bangalore city urgent")
    assert fields.purpose == "home loan"
    assert fields.location_area == "Bangalore"
    assert fields.urgency is True


def test_extract_identifiers_returns_only_identifier_subset():
    ids = extract_identifiers("Name: Ramesh, Phone: 9876543210, email ramesh@example.com, Loan 2 lakh")
    assert ids == {"phone": "9876543210", "email": "ramesh@example.com"}


def test_labeled_phone_leaves_trailing_amount_readable():
    fields = extract("Ph 98765 43210 50k")

    assert fields.phone == "9876543210"
    assert fields.amount == 50000
