import logging


def test_end_to_end_flow(client, make_user, headers_for, payments, notifier, next_monday):
    doctor_user = make_user("doctor")
    patient = make_user("patient")
    other_patient = make_user("patient")
    service = make_user("admin")
    day = next_monday.isoformat()

    logging.info("Doctor sets up a profile and a Monday schedule")
    response = client.post("/doctors", json={
        "cancellation_policy": "moderate",
        "consultation_types": ["in_person", "video"],
        "consultation_fee_cents": 9000,
        "video_consultation_fee_cents": 7000,
    }, headers=headers_for(doctor_user))
    assert response.status_code == 201, response.text
    doctor_id = response.json()["id"]

    response = client.post(f"/doctors/{doctor_id}/schedule", json={
        "day_of_week": 1, "start_time": "9am", "end_time": "11am", "consultation_type": "video",
    }, headers=headers_for(doctor_user))
    assert response.status_code == 201, response.text

    response = client.post(f"/doctors/{doctor_id}/overrides", json={
        "override_date": day, "start_time": "10:00", "end_time": "10:30",
    }, headers=headers_for(doctor_user))
    assert response.status_code == 201, response.text

    logging.info("Patient browses video slots")
    response = client.get(f"/doctors/{doctor_id}/slots", params={"date": day, "consultation_type": "video"})
    assert response.status_code == 200
    assert [s["slot_start"] for s in response.json()] == ["09:00:00", "09:30:00", "10:30:00"]

    response = client.get(f"/doctors/{doctor_id}/slots", params={"date": day, "consultation_type": "in_person"})
    assert response.json() == []

    logging.info("Patient asks for an in-person visit in a video-only window")
    booking_request = {
        "doctor_id": doctor_id, "appointment_date": day,
        "start_time": "09:30", "end_time": "10:00", "consultation_type": "in_person",
    }
    response = client.post("/bookings", json=booking_request, headers=headers_for(patient))
    assert response.status_code == 422
    assert response.json()["error"] == "not_offered"

    logging.info("Patient reserves a video slot")
    booking_request["consultation_type"] = "video"
    response = client.post("/bookings", json=booking_request, headers=headers_for(patient))
    assert response.status_code == 201, response.text
    booking = response.json()
    assert booking["status"] == "pending_payment"
    assert booking["consultation_fee_cents"] == 7000
    assert booking["platform_fee_cents"] == 1050
    assert booking["total_amount_cents"] == 8050

    logging.info("A second patient loses the race for the same slot")
    response = client.post("/bookings", json=booking_request, headers=headers_for(other_patient))
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"

    response = client.get(f"/doctors/{doctor_id}/slots", params={"date": day, "consultation_type": "video"})
    assert [s["slot_start"] for s in response.json()] == ["09:00:00", "10:30:00"]

    logging.info("Payment is captured")
    response = client.post(f"/bookings/{booking['id']}/payment", json={"succeeded": True},
                           headers=headers_for(service))
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "confirmed"

    response = client.get("/bookings/me", headers=headers_for(patient))
    assert [b["status"] for b in response.json()] == ["confirmed"]

    response = client.get(f"/doctors/{doctor_id}/bookings", headers=headers_for(doctor_user))
    assert [b["id"] for b in response.json()] == [booking["id"]]

    logging.info("Patient cancels a week ahead and gets everything back")
    response = client.post(f"/bookings/{booking['id']}/cancel", json={"reason": "Schedule clash"},
                           headers=headers_for(patient))
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "cancelled_patient"
    assert response.json()["refund_amount_cents"] == 8050
    assert payments.refunds == [(booking["id"], 8050)]
    assert [event[0] for event in notifier.events] == ["confirmed", "cancelled"]

    logging.info("The slot is bookable again")
    response = client.get(f"/doctors/{doctor_id}/slots", params={"date": day, "consultation_type": "video"})
    assert [s["slot_start"] for s in response.json()] == ["09:00:00", "09:30:00", "10:30:00"]

    response = client.post("/bookings", json=booking_request, headers=headers_for(other_patient))
    assert response.status_code == 201, response.text

    logging.info("Doctor marks the refund as processed")
    response = client.post(f"/bookings/{booking['id']}/status", json={"status": "refunded"},
                           headers=headers_for(doctor_user))
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "refunded"
