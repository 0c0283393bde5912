"""Database models package exports."""

from agenda.db.models.anomaly import BillingAnomaly
from agenda.db.models.appointment import Appointment
from agenda.db.models.bio_link import BioLink
from agenda.db.models.employee import Employee
from agenda.db.models.service import Service
from agenda.db.models.subscription import Subscription, SubscriptionStatus
from agenda.db.models.testimonial import Testimonial

__all__ = [
    "Appointment",
    "BillingAnomaly",
    "BioLink",
    "Employee",
    "Service",
    "Subscription",
    "SubscriptionStatus",
    "Testimonial",
]
