# =============================================================================
# ops_core/sync/seed.py
# Built-in records seeded into an empty cache-only workspace
# =============================================================================

from __future__ import annotations
from typing import List

from ops_core.models import SOP, Step, TaskTemplate

SEED_TIMESTAMP = "2024-01-01T00:00:00.000Z"
SEED_AUTHOR = "system"


def _steps(*items) -> List[Step]:
    return [
        Step(
            id=f"step_{order}",
            order=order,
            title=title,
            description=description,
            requires_photo=requires_photo,
        )
        for order, (title, description, requires_photo) in enumerate(items, start=1)
    ]


def default_sops() -> List[SOP]:
    return [
        SOP(
            id="sop_default_accounts_receivable",
            created_at=SEED_TIMESTAMP,
            created_by=SEED_AUTHOR,
            title="Remote Accounts Receivable Assistant",
            description=(
                "Standard operating procedures for managing accounts receivable, "
                "tuition, fees, and financial records."
            ),
            department="Admin",
            category="Finance & Accounting",
            icon="box",
            tags=["finance", "accounting", "receivables", "tuition"],
            status="published",
            steps=_steps(
                ("Post Tuition and Fees",
                 "Review and post all incoming tuition and fee payments to student accounts.", False),
                ("Manage Autopay and Manual Payments",
                 "Process recurring autopay transactions and manual payment submissions.", False),
                ("Monitor Outstanding Balances",
                 "Review aging reports daily and flag accounts with overdue payments.", False),
                ("Send Reminders and Follow-ups",
                 "Send payment reminders; escalate to phone calls for accounts 30+ days overdue.", False),
                ("Record Refunds, Discounts, and Credits",
                 "Process approved refunds, discounts and credits with documentation.", False),
                ("Maintain Financial Records and Reporting",
                 "Generate aging reports, payment summaries and monthly reconciliations.", False),
            ),
        ),
        SOP(
            id="sop_default_reporting",
            created_at=SEED_TIMESTAMP,
            created_by=SEED_AUTHOR,
            title="Monthly Reporting and Reconciliation",
            description=(
                "Standard operating procedures for generating monthly income reports "
                "and class tuition reconciliation."
            ),
            department="Admin",
            category="Finance & Accounting",
            icon="box",
            tags=["reporting", "reconciliation", "income", "tuition"],
            status="published",
            steps=_steps(
                ("Monthly Income Report",
                 "Export the income and payment reports to the shared drive by the 5th.", False),
                ("Class Tuition Reconciliation",
                 "Verify posted tuition matches enrollment using the charges-by-class report.", False),
            ),
        ),
    ]


def default_task_templates() -> List[TaskTemplate]:
    weekdays = {"frequency": "daily", "days_of_week": [1, 2, 3, 4, 5]}
    return [
        TaskTemplate(
            id="template_opening_duties",
            created_at=SEED_TIMESTAMP,
            created_by=SEED_AUTHOR,
            title="Morning Opening Duties",
            description="Complete all tasks required to open the facility for the day",
            category="Opening Duties",
            department="Admin",
            estimated_duration=45,
            priority="high",
            steps=_steps(
                ("Unlock doors and disable alarm", "Unlock main entrance and disable security system", False),
                ("Turn on lights and HVAC", "Turn on all lights and set the thermostat", False),
                ("Check voice mail and emails", "Review and respond to urgent messages", False),
                ("Prepare reception area", "Ensure reception is clean and organized", True),
            ),
            is_recurring=True,
            recurrence_pattern=dict(weekdays),
        ),
        TaskTemplate(
            id="template_closing_duties",
            created_at=SEED_TIMESTAMP,
            created_by=SEED_AUTHOR,
            title="Evening Closing Duties",
            description="Complete all tasks required to close the facility for the day",
            category="Closing Duties",
            department="Admin",
            estimated_duration=30,
            priority="high",
            steps=_steps(
                ("Check all rooms are empty", "Walk through all rooms and ensure no one is left", False),
                ("Turn off lights and equipment", "Turn off all lights, computers, and equipment", False),
                ("Lock all doors and windows", "Ensure all entry points are secured", False),
                ("Arm security system", "Activate alarm system and verify it is armed", False),
            ),
            is_recurring=True,
            recurrence_pattern=dict(weekdays),
        ),
        TaskTemplate(
            id="template_weekly_inventory",
            created_at=SEED_TIMESTAMP,
            created_by=SEED_AUTHOR,
            title="Weekly Supply Inventory",
            description="Check and restock all supplies",
            category="Weekly Maintenance",
            department="Admin",
            estimated_duration=60,
            priority="medium",
            steps=_steps(
                ("Check office supplies", "Count and note items running low", False),
                ("Check classroom materials", "Review classroom supply levels", False),
                ("Create shopping list", "Compile list of items to order", False),
                ("Submit purchase orders", "Submit orders for approved supplies", False),
            ),
            is_recurring=True,
            recurrence_pattern={"frequency": "weekly", "days_of_week": [1]},
        ),
    ]
