import uuid

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="QueueEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entry_id", models.UUIDField(db_index=True, default=uuid.uuid4, unique=True)),
                ("participant_id", models.CharField(db_index=True, max_length=64)),
                ("role", models.CharField(choices=[("venter", "venter"), ("listener", "listener")], max_length=10)),
                (
                    "status",
                    models.CharField(
                        choices=[("WAITING", "WAITING"), ("MATCHED", "MATCHED")],
                        default="WAITING",
                        max_length=10,
                    ),
                ),
                ("vent_message", models.TextField(blank=True, null=True)),
                ("plan", models.CharField(blank=True, max_length=50, null=True)),
                ("session_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("matched_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["role", "status", "created_at"], name="queue_role_status_created"),
                ],
            },
        ),
    ]
