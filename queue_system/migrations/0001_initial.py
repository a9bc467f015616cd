import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Window',
            fields=[
                ('id', models.PositiveSmallIntegerField(primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=50)),
                ('busy', models.BooleanField(default=False)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='Ticket',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('service', models.CharField(db_index=True, max_length=16)),
                ('number', models.IntegerField()),
                ('code', models.CharField(max_length=32, unique=True)),
                ('status', models.CharField(choices=[('waiting', 'Waiting'), ('serving', 'Serving'), ('done', 'Done'), ('skipped', 'Skipped'), ('transferred', 'Transferred')], default='waiting', max_length=20)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('notes', models.TextField(blank=True, null=True)),
                ('owner_name', models.CharField(blank=True, max_length=200, null=True)),
                ('woreda', models.CharField(blank=True, max_length=200, null=True)),
                ('service_start_time', models.DateTimeField(blank=True, null=True)),
                ('service_end_time', models.DateTimeField(blank=True, null=True)),
                ('skip_reason', models.TextField(blank=True, null=True)),
                ('window', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='tickets', to='queue_system.window')),
            ],
            options={
                'ordering': ['created_at', 'number'],
                'unique_together': {('service', 'number')},
            },
        ),
        migrations.AddIndex(
            model_name='ticket',
            index=models.Index(fields=['service', 'status', 'created_at', 'number'], name='ticket_queue_lookup_idx'),
        ),
        migrations.AddField(
            model_name='window',
            name='current_ticket',
            field=models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='assigned_window', to='queue_system.ticket'),
        ),
    ]
