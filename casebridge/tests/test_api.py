"""
Client Portal API Tests
=======================

End to end over HTTP: a client files a case report with a supporting
document, the firm accepts it, and the client follows the matter.
"""

from conftest import add_client, client_headers, staff_headers


def test_client_portal_flow(api, db, seeded):
    client = client_headers(api, seeded.client.email)

    firms = api.get("/client/firms", headers=client).json()
    assert seeded.firm.id in [f["id"] for f in firms]

    report = api.post("/client/case-reports", json={
        "category": "commercial",
        "title": "Unpaid supplier invoices",
        "description": "Distributor has not paid for three shipments",
        "preferred_firm_id": seeded.firm.id,
    }, headers=client)
    assert report.status_code == 201
    report_id = report.json()["id"]

    upload = api.post(
        f"/client/case-reports/{report_id}/documents",
        files={"file": ("invoices.pdf", b"%PDF invoices", "application/pdf")},
        headers=client,
    )
    assert upload.status_code == 201
    assert [d["id"] for d in api.get(f"/client/case-reports/{report_id}/documents", headers=client).json()] == [
        upload.json()["id"]
    ]

    # Firm side
    manager = staff_headers(api, seeded.manager.email)
    assert [r["id"] for r in api.get("/internal/intake", headers=manager).json()] == [report_id]
    assert len(api.get(f"/internal/intake/{report_id}/documents", headers=manager).json()) == 1
    assert api.post(f"/internal/intake/{report_id}/review", headers=manager).status_code == 200
    accepted = api.post(f"/internal/intake/{report_id}/accept",
                        json={"associate_id": seeded.associate.id}, headers=manager)
    assert accepted.status_code == 200
    matter_id = accepted.json()["id"]

    # Client follows the matter
    assert api.get("/client/case-reports", headers=client).json()[0]["status"] == "accepted"
    listed = api.get("/client/matters", headers=client).json()
    assert [m["id"] for m in listed] == [matter_id]

    matter = api.get(f"/client/matters/{matter_id}", headers=client).json()
    assert matter["status"] == "assigned"
    assert "assigned_associate_id" not in matter

    timeline = api.get(f"/client/matters/{matter_id}/timeline", headers=client).json()
    actions = {entry["action"] for entry in timeline}
    assert {"case_created", "case_assigned"} <= actions
    assert all(entry.get("actor_id") is None for entry in timeline)

    documents = api.get(f"/client/matters/{matter_id}/documents", headers=client).json()
    assert [d["id"] for d in documents] == [upload.json()["id"]]
    link = api.get(f"/client/documents/{documents[0]['id']}/url", headers=client).json()
    assert api.get(link["url"]).content == b"%PDF invoices"

    # An associate update shared with the client
    associate = staff_headers(api, seeded.associate.email)
    shared = api.post(f"/internal/matters/{matter_id}/updates", json={
        "title": "Demand letter sent", "content": "We wrote to the distributor today", "client_visible": True,
    }, headers=associate)
    assert shared.status_code == 201
    updates = api.get(f"/client/matters/{matter_id}/updates", headers=client).json()
    assert [u["title"] for u in updates] == ["Demand letter sent"]

    client_upload = api.post(
        f"/client/matters/{matter_id}/documents",
        files={"file": ("receipt.png", b"\x89PNG", "image/png")},
        headers=client,
    )
    assert client_upload.status_code == 201
    staff_docs = api.get(f"/internal/matters/{matter_id}/documents", headers=associate).json()
    assert len(staff_docs) == 2


def test_client_cannot_see_other_clients_matters(api, db, seeded):
    report = api.post("/client/case-reports", json={
        "category": "family", "title": "Custody", "description": "Shared custody terms",
    }, headers=client_headers(api, seeded.client.email))
    report_id = report.json()["id"]

    add_client(db, "neighbour@example.com")
    neighbour = client_headers(api, "neighbour@example.com")
    assert api.get(f"/client/case-reports/{report_id}", headers=neighbour).status_code == 404
    assert api.get("/client/matters", headers=neighbour).json() == []


def test_portals_are_separate(api, seeded):
    client = client_headers(api, seeded.client.email)
    staff = staff_headers(api, seeded.associate.email)

    assert api.get("/internal/matters", headers=client).status_code == 403
    assert api.get("/client/matters", headers=staff).status_code == 403
    assert api.get("/client/matters").status_code == 401


def test_me_reports_role_and_firm(api, seeded):
    me = api.get("/auth/me", headers=staff_headers(api, seeded.manager.email)).json()
    assert me["firm_id"] == seeded.firm.id
    assert me["internal_role"] == "case_manager"

    me = api.get("/auth/me", headers=client_headers(api, seeded.client.email)).json()
    assert me["firm_id"] is None
