"""
Integration tests for the CareLink API.

These tests drive the marketplace through HTTP: posting a request,
bidding, accepting a bid, working through dual completion, and the error
envelope returned when an actor or a state refuses an action.  They use
Django REST Framework's APIClient within the APITestCase base class.

To run the tests:

```
pytest -q core/tests
```
"""

from django.core.cache import cache
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from ..models import Application, Notification, ServiceRequest, User


@override_settings(NOTIFY_PUSH_ENABLE=False)
class MarketplaceAPITests(APITestCase):
    def setUp(self) -> None:
        """Create one patient, three nurses (N3 unverified) and an administrator."""
        cache.clear()
        self.patient = User.objects.create_user(username="patient1", password="P@ssw0rd1", role="patient",
                                                verification_status="verified")
        self.stranger = User.objects.create_user(username="patient2", password="P@ssw0rd1", role="patient",
                                                 verification_status="verified")
        self.n1 = User.objects.create_user(username="nurse1", password="P@ssw0rd1", role="nurse",
                                           verification_status="verified")
        self.n2 = User.objects.create_user(username="nurse2", password="P@ssw0rd1", role="nurse",
                                           verification_status="verified")
        self.n3 = User.objects.create_user(username="nurse3", password="P@ssw0rd1", role="nurse",
                                           verification_status="pending")
        self.admin = User.objects.create_user(username="admin1", password="P@ssw0rd1", role="admin",
                                              verification_status="verified")

    def authenticate(self, user: User) -> APIClient:
        """Return an authenticated APIClient for the given user."""
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def post_request(self, **overrides) -> int:
        body = {
            "title": "Post-surgery wound care",
            "description": "Daily dressing change for two weeks",
            "serviceType": "post_surgical_care",
            "address": "12 Harbour Road, Flat 3",
            "scheduledDate": "2030-01-15T10:00:00Z",
            "estimatedDuration": 2,
            "urgencyLevel": "high",
            "budget": "200.00",
        }
        body.update(overrides)
        response = self.authenticate(self.patient).post(reverse("requests"), body, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data["data"]["id"]

    def bid(self, nurse: User, request_id: int, price: str, hours: int = 3):
        return self.authenticate(nurse).post(
            reverse("applications"), {"requestId": request_id, "price": price, "estimatedTime": hours}, format="json"
        )

    def assertError(self, response, http_status: int, code: str):
        self.assertEqual(response.status_code, http_status, response.data)
        self.assertIs(response.data["ok"], False)
        self.assertEqual(response.data["error"]["code"], code)

    def test_full_bidding_and_dual_completion_flow(self):
        """Two bids, one accepted, work started, both sides confirm."""
        rid = self.post_request()
        detail = self.authenticate(self.patient).get(reverse("request-detail", args=[rid]))
        self.assertEqual(detail.data["data"]["status"], "pending")

        a1 = self.bid(self.n1, rid, "180.00")
        a2 = self.bid(self.n2, rid, "200.00")
        self.assertEqual(a1.status_code, status.HTTP_201_CREATED)
        self.assertEqual(a2.status_code, status.HTTP_201_CREATED)

        listed = self.authenticate(self.patient).get(reverse("request-applications", args=[rid]))
        self.assertEqual(len(listed.data["data"]), 2)

        accepted = self.authenticate(self.patient).patch(
            reverse("application-status", args=[a1.data["data"]["id"]]), {"status": "accepted"}, format="json"
        )
        self.assertEqual(accepted.status_code, status.HTTP_200_OK, accepted.data)
        req = ServiceRequest.objects.get(pk=rid)
        self.assertEqual(req.status, "accepted")
        self.assertEqual(req.nurse_id, self.n1.id)
        self.assertEqual(Application.objects.get(pk=a2.data["data"]["id"]).status, "rejected")

        started = self.authenticate(self.n1).patch(reverse("request-status", args=[rid]), {"status": "in_progress"},
                                                   format="json")
        self.assertEqual(started.data["data"]["status"], "in_progress")

        provider = self.authenticate(self.n1).post(reverse("request-complete-provider", args=[rid]))
        self.assertEqual(provider.status_code, status.HTTP_200_OK)
        self.assertIs(provider.data["completed"], False)
        self.assertEqual(provider.data["data"]["status"], "in_progress")

        patient = self.authenticate(self.patient).post(reverse("request-complete-patient", args=[rid]))
        self.assertIs(patient.data["completed"], True)
        self.assertEqual(patient.data["data"]["status"], "completed")
        self.assertIsNotNone(patient.data["data"]["completedAt"])

        history = self.authenticate(self.patient).get(reverse("request-history", args=[rid]))
        self.assertEqual([h["action"] for h in history.data["data"]],
                         ["create", "accept_application", "start", "provider_confirm_complete",
                          "patient_confirm_complete"])

    def test_unverified_nurse_is_refused_and_leaves_no_trace(self):
        rid = self.post_request()
        response = self.bid(self.n3, rid, "150.00")
        self.assertError(response, status.HTTP_403_FORBIDDEN, "not_verified")
        self.assertFalse(Application.objects.filter(request_id=rid).exists())

        response = self.authenticate(self.n3).patch(reverse("request-status", args=[rid]), {"status": "accepted"},
                                                    format="json")
        self.assertError(response, status.HTTP_403_FORBIDDEN, "not_verified")
        self.assertEqual(ServiceRequest.objects.get(pk=rid).status, "pending")

    def test_duplicate_bid_is_conflict(self):
        rid = self.post_request()
        self.bid(self.n1, rid, "180.00")
        self.assertError(self.bid(self.n1, rid, "170.00"), status.HTTP_409_CONFLICT, "duplicate_application")

    def test_bid_on_taken_request_is_not_open(self):
        rid = self.post_request()
        self.authenticate(self.n1).patch(reverse("request-status", args=[rid]), {"status": "accepted"}, format="json")
        self.assertError(self.bid(self.n2, rid, "150.00"), status.HTTP_409_CONFLICT, "request_not_open")

    def test_cancel_completed_is_invalid_transition(self):
        rid = self.post_request()
        nurse = self.authenticate(self.n1)
        nurse.patch(reverse("request-status", args=[rid]), {"status": "accepted"}, format="json")
        nurse.patch(reverse("request-status", args=[rid]), {"status": "in_progress"}, format="json")
        nurse.patch(reverse("request-status", args=[rid]), {"status": "completed"}, format="json")
        self.authenticate(self.patient).patch(reverse("request-status", args=[rid]), {"status": "completed"},
                                              format="json")

        response = self.authenticate(self.patient).patch(
            reverse("request-status", args=[rid]), {"status": "cancelled"}, format="json"
        )
        self.assertError(response, status.HTTP_409_CONFLICT, "invalid_transition")
        self.assertEqual(response.data["error"]["current"], "completed")
        self.assertEqual(response.data["error"]["target"], "cancelled")

    def test_forbidden_and_invalid_transition_are_distinct(self):
        rid = self.post_request()
        forbidden = self.authenticate(self.stranger).patch(
            reverse("request-status", args=[rid]), {"status": "cancelled"}, format="json"
        )
        self.assertError(forbidden, status.HTTP_403_FORBIDDEN, "forbidden")

        invalid = self.authenticate(self.n1).patch(
            reverse("request-status", args=[rid]), {"status": "in_progress"}, format="json"
        )
        self.assertError(invalid, status.HTTP_409_CONFLICT, "invalid_transition")

    def test_status_patch_without_status_is_bad_request(self):
        rid = self.post_request()
        response = self.authenticate(self.patient).patch(reverse("request-status", args=[rid]), {}, format="json")
        self.assertError(response, status.HTTP_400_BAD_REQUEST, "bad_request")
        response = self.authenticate(self.patient).patch(
            reverse("request-status", args=[rid]), {"status": "archived"}, format="json"
        )
        self.assertError(response, status.HTTP_400_BAD_REQUEST, "bad_request")

    def test_overlong_cancellation_reason_reports_the_reason_field(self):
        rid = self.post_request()
        response = self.authenticate(self.patient).patch(
            reverse("request-status", args=[rid]),
            {"status": "cancelled", "cancellationReason": "x" * 256},
            format="json",
        )
        self.assertError(response, status.HTTP_400_BAD_REQUEST, "bad_request")
        self.assertIn("cancellationReason", response.data["error"]["message"])
        self.assertEqual(ServiceRequest.objects.get(pk=rid).status, "pending")

    def test_status_patch_to_pending_is_invalid_transition(self):
        rid = self.post_request()
        response = self.authenticate(self.admin).patch(
            reverse("request-status", args=[rid]), {"status": "pending"}, format="json"
        )
        self.assertError(response, status.HTTP_409_CONFLICT, "invalid_transition")

    def test_admin_cancel_with_reason(self):
        rid = self.post_request()
        response = self.authenticate(self.admin).patch(
            reverse("request-status", args=[rid]),
            {"status": "cancelled", "cancellationReason": "Posted twice"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["data"]["cancellationReason"], "Posted twice")
        self.assertTrue(Notification.objects.filter(user=self.patient, kind="request_cancelled").exists())

    def test_unknown_request_is_not_found(self):
        response = self.authenticate(self.patient).get(reverse("request-detail", args=[987654]))
        self.assertError(response, status.HTTP_404_NOT_FOUND, "not_found")

    def test_detail_hidden_from_strangers(self):
        rid = self.post_request()
        response = self.authenticate(self.stranger).get(reverse("request-detail", args=[rid]))
        self.assertError(response, status.HTTP_403_FORBIDDEN, "forbidden")

    def test_create_validates_payload(self):
        response = self.authenticate(self.patient).post(reverse("requests"), {"title": "Hi"}, format="json")
        self.assertError(response, status.HTTP_400_BAD_REQUEST, "bad_request")

    def test_nurse_cannot_create_request(self):
        body = {
            "title": "Post-surgery wound care",
            "description": "Daily dressing change for two weeks",
            "serviceType": "wound_care",
            "address": "12 Harbour Road, Flat 3",
        }
        response = self.authenticate(self.n1).post(reverse("requests"), body, format="json")
        self.assertError(response, status.HTTP_403_FORBIDDEN, "forbidden")

    def test_list_is_filtered_and_paginated(self):
        self.post_request()
        self.post_request()
        response = self.authenticate(self.patient).get(reverse("requests"), {"status": "pending", "pageSize": 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["pagination"]["total"], 2)
        self.assertEqual(len(response.data["data"]), 1)
        self.assertEqual(self.authenticate(self.stranger).get(reverse("requests")).data["pagination"]["total"], 0)

    def test_edit_pending_request(self):
        rid = self.post_request()
        response = self.authenticate(self.patient).put(
            reverse("request-detail", args=[rid]), {"notes": "Ring the bell twice"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["data"]["notes"], "Ring the bell twice")

    def test_withdraw_and_revise_bid(self):
        rid = self.post_request()
        app_id = self.bid(self.n1, rid, "180.00").data["data"]["id"]
        nurse = self.authenticate(self.n1)
        revised = nurse.put(reverse("application-detail", args=[app_id]), {"price": "160.00"}, format="json")
        self.assertEqual(revised.data["data"]["price"], 160.0)
        mine = nurse.get(reverse("applications-mine"))
        self.assertEqual([a["id"] for a in mine.data["data"]], [app_id])

        other = self.authenticate(self.n2).delete(reverse("application-detail", args=[app_id]))
        self.assertError(other, status.HTTP_403_FORBIDDEN, "forbidden")
        gone = nurse.delete(reverse("application-detail", args=[app_id]))
        self.assertEqual(gone.status_code, status.HTTP_200_OK)
        self.assertFalse(Application.objects.filter(pk=app_id).exists())

    def test_patient_cannot_list_applications_mine(self):
        response = self.authenticate(self.patient).get(reverse("applications-mine"))
        self.assertError(response, status.HTTP_403_FORBIDDEN, "forbidden")

    def test_unauthenticated_is_rejected(self):
        response = APIClient().get(reverse("requests"))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
        self.assertIs(response.data["ok"], False)
