import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='NurseProfile',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('full_name', models.CharField(max_length=255)),
                ('services_offered', models.JSONField(blank=True, default=list)),
                ('home_visit_radius', models.PositiveIntegerField(blank=True, help_text='km', null=True)),
                ('city', models.CharField(blank=True, max_length=120, null=True)),
                ('per_visit_fee', models.PositiveIntegerField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'pending'), ('approved', 'approved'), ('suspended', 'suspended')], db_index=True, default='pending', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='nurse_profile', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='EmergencyRequest',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('patient_name', models.CharField(max_length=255)),
                ('patient_phone', models.CharField(blank=True, max_length=32)),
                ('location_lat', models.FloatField()),
                ('location_lng', models.FloatField()),
                ('location_address', models.TextField(blank=True, null=True)),
                ('city', models.CharField(blank=True, max_length=120, null=True)),
                ('services_needed', models.JSONField(default=list)),
                ('urgency', models.CharField(choices=[('critical', 'critical'), ('within_1_hour', 'within_1_hour'), ('scheduled', 'scheduled')], default='critical', max_length=16)),
                ('patient_offer_price', models.PositiveIntegerField(blank=True, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('status', models.CharField(choices=[('live', 'live'), ('matched', 'matched'), ('cancelled', 'cancelled'), ('expired', 'expired')], db_index=True, default='live', max_length=16)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('accepted_nurse', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='matched_requests', to='nursing.nurseprofile')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='emergency_requests', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [models.Index(fields=['status', 'created_at'], name='nursing_req_status_created')],
            },
        ),
        migrations.CreateModel(
            name='NurseOffer',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('offered_price', models.PositiveIntegerField()),
                ('eta_minutes', models.PositiveIntegerField()),
                ('message', models.TextField(blank=True, null=True)),
                ('nurse_lat', models.FloatField(blank=True, null=True)),
                ('nurse_lng', models.FloatField(blank=True, null=True)),
                ('distance_km', models.FloatField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'pending'), ('accepted', 'accepted'), ('rejected', 'rejected')], default='pending', max_length=16)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('nurse', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='nursing.nurseprofile')),
                ('request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='offers', to='nursing.emergencyrequest')),
            ],
            options={
                'indexes': [models.Index(fields=['nurse', 'created_at'], name='nursing_offer_nurse_created')],
                'unique_together': {('request', 'nurse')},
            },
        ),
        migrations.AddField(
            model_name='emergencyrequest',
            name='accepted_offer',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='nursing.nurseoffer'),
        ),
    ]
