"""
Add celery-beat schedules for the authorized payment sweeps.

Creates:
    - Expire Authorized Payments: hourly
    - Retry Failed Charges: every 15 minutes
    - Clean Up Transaction Records: daily
"""

from django.db import migrations

PERIODIC_SWEEPS = [
    {
        "name": "Expire Authorized Payments",
        "task": "authorized_payments.tasks.sweep_expired_authorizations",
        "every": 1,
        "period": "hours",
        "description": "Moves ACTIVE authorizations past their validity date to EXPIRED.",
    },
    {
        "name": "Retry Failed Charges",
        "task": "authorized_payments.tasks.sweep_retryable_charges",
        "every": 15,
        "period": "minutes",
        "description": "Creates new attempts for failed charges whose cooldown has elapsed.",
    },
    {
        "name": "Clean Up Transaction Records",
        "task": "authorized_payments.tasks.cleanup_transaction_records",
        "every": 1,
        "period": "days",
        "description": "Deletes old successful and cancelled gateway call records.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for sweep in PERIODIC_SWEEPS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=sweep["every"],
            period=sweep["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=sweep["name"],
            defaults={
                "task": sweep["task"],
                "interval": schedule,
                "enabled": True,
                "description": sweep["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[sweep["name"] for sweep in PERIODIC_SWEEPS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("authorized_payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
