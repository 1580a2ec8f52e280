import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="VentSession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("session_id", models.UUIDField(db_index=True, default=uuid.uuid4, unique=True)),
                ("venter_id", models.CharField(db_index=True, max_length=64)),
                ("listener_id", models.CharField(db_index=True, max_length=64)),
                ("channel_id", models.CharField(max_length=64, unique=True)),
                ("vent_message", models.TextField(blank=True, default="")),
                ("plan", models.CharField(max_length=50)),
                (
                    "status",
                    models.CharField(
                        choices=[("ACTIVE", "ACTIVE"), ("ENDED", "ENDED")],
                        default="ACTIVE",
                        max_length=10,
                    ),
                ),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("duration_seconds", models.PositiveIntegerField(default=0)),
                (
                    "end_reason",
                    models.CharField(
                        blank=True,
                        choices=[("manual-ended", "manual-ended"), ("auto-ended", "auto-ended")],
                        max_length=20,
                        null=True,
                    ),
                ),
                ("venter_queue_entry_id", models.UUIDField(blank=True, null=True)),
                ("listener_queue_entry_id", models.UUIDField(blank=True, null=True)),
            ],
        ),
    ]
