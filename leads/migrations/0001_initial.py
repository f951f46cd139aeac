import decimal

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
            name='Client',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(blank=True, default='', max_length=100)),
                ('email', models.EmailField(max_length=254)),
                ('phone', models.CharField(blank=True, default='', max_length=30)),
                ('nationality', models.CharField(default='Not specified', max_length=100)),
                ('country', models.CharField(default='Not specified', max_length=100)),
                ('budget_min', models.DecimalField(decimal_places=2, default=decimal.Decimal('200000'), max_digits=14)),
                ('budget_max', models.DecimalField(decimal_places=2, default=decimal.Decimal('500000'), max_digits=14)),
                ('source', models.CharField(default='OTHER', max_length=30)),
                ('investment_purpose', models.CharField(choices=[('RESIDENTIAL', 'Residential'), ('INVESTMENT', 'Investment'), ('CITIZENSHIP', 'Citizenship'), ('HOLIDAY_HOME', 'Holiday Home'), ('OTHER', 'Other')], default='RESIDENTIAL', max_length=20)),
                ('notes', models.TextField(blank=True, null=True)),
                ('assigned_agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='clients', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Enquiry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(blank=True, default='', max_length=100)),
                ('email', models.EmailField(max_length=254)),
                ('phone', models.CharField(blank=True, default='', max_length=30)),
                ('message', models.TextField(blank=True, null=True)),
                ('source', models.CharField(choices=[('WEBSITE_FORM', 'Website Form'), ('PHONE_CALL', 'Phone Call'), ('EMAIL', 'Email'), ('WHATSAPP', 'WhatsApp'), ('LIVE_CHAT', 'Live Chat'), ('PARTNER_REFERRAL', 'Partner Referral')], default='WEBSITE_FORM', max_length=30)),
                ('source_url', models.CharField(blank=True, max_length=500, null=True)),
                ('status', models.CharField(choices=[('NEW', 'New'), ('ASSIGNED', 'Assigned'), ('CONTACTED', 'Contacted'), ('CONVERTED_TO_CLIENT', 'Converted to Client'), ('SPAM', 'Spam'), ('CLOSED', 'Closed')], db_index=True, default='NEW', max_length=30)),
                ('segment', models.CharField(default='Buyer', max_length=20)),
                ('lead_status', models.CharField(default='New', max_length=30)),
                ('priority', models.CharField(default='Medium', max_length=10)),
                ('next_call_date', models.DateTimeField(blank=True, null=True)),
                ('snooze', models.CharField(default='Active', max_length=20)),
                ('budget', models.CharField(blank=True, max_length=100, null=True)),
                ('country', models.CharField(blank=True, max_length=100, null=True)),
                ('called', models.BooleanField(default=False)),
                ('spoken', models.BooleanField(default=False)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('pool', models.PositiveSmallIntegerField(blank=True, choices=[(1, 'Pool 1'), (2, 'Pool 2'), (3, 'Pool 3')], db_index=True, null=True)),
                ('assigned_agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='enquiries', to=settings.AUTH_USER_MODEL)),
                ('converted_client', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='source_enquiry', to='leads.client')),
            ],
            options={
                'verbose_name_plural': 'Enquiries',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('assigned_agent__isnull', True), ('pool__isnull', True), _connector='OR'), name='enquiry_single_owner'),
                    models.CheckConstraint(condition=models.Q(('pool__isnull', True), models.Q(('pool__gte', 1), ('pool__lte', 3)), _connector='OR'), name='enquiry_pool_range'),
                    models.CheckConstraint(condition=models.Q(models.Q(('converted_client__isnull', False), ('status', 'CONVERTED_TO_CLIENT')), models.Q(models.Q(('status', 'CONVERTED_TO_CLIENT'), _negated=True), ('converted_client__isnull', True)), _connector='OR'), name='enquiry_converted_has_client'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Lead',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('lead_number', models.CharField(max_length=40, unique=True)),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, null=True)),
                ('stage', models.CharField(choices=[('NEW_ENQUIRY', 'New Enquiry'), ('CONTACTED', 'Contacted'), ('QUALIFIED', 'Qualified'), ('VIEWING_ARRANGED', 'Viewing Arranged'), ('VIEWED', 'Viewed'), ('OFFER_MADE', 'Offer Made'), ('NEGOTIATING', 'Negotiating'), ('WON', 'Won'), ('LOST', 'Lost')], db_index=True, default='NEW_ENQUIRY', max_length=20)),
                ('estimated_value', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('currency', models.CharField(choices=[('USD', 'US Dollar'), ('EUR', 'Euro'), ('GBP', 'British Pound'), ('TRY', 'Turkish Lira'), ('AED', 'UAE Dirham')], default='USD', max_length=3)),
                ('budget_range', models.CharField(blank=True, choices=[('UNDER_250K', 'Under 250K'), ('FROM_250K_TO_500K', '250K - 500K'), ('FROM_500K_TO_1M', '500K - 1M'), ('FROM_1M_TO_2M', '1M - 2M'), ('OVER_2M', 'Over 2M')], max_length=20, null=True)),
                ('property_type', models.CharField(blank=True, choices=[('APARTMENT', 'Apartment'), ('VILLA', 'Villa'), ('PENTHOUSE', 'Penthouse'), ('TOWNHOUSE', 'Townhouse'), ('COMMERCIAL', 'Commercial'), ('LAND', 'Land')], max_length=20, null=True)),
                ('preferred_location', models.CharField(blank=True, max_length=255, null=True)),
                ('source', models.CharField(choices=[('WEBSITE', 'Website'), ('REFERRAL', 'Referral'), ('SOCIAL_MEDIA', 'Social Media'), ('PARTNER', 'Partner'), ('OTHER', 'Other')], default='OTHER', max_length=20)),
                ('source_detail', models.CharField(blank=True, max_length=500, null=True)),
                ('lost_reason', models.TextField(blank=True, default='')),
                ('called', models.BooleanField(default=False)),
                ('spoken', models.BooleanField(default=False)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('pool', models.PositiveSmallIntegerField(blank=True, choices=[(1, 'Pool 1'), (2, 'Pool 2'), (3, 'Pool 3')], db_index=True, null=True)),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='leads', to='leads.client')),
                ('enquiry', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='leads', to='leads.enquiry')),
                ('owner', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='owned_leads', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('owner__isnull', True), ('pool__isnull', True), _connector='OR'), name='lead_single_owner'),
                    models.CheckConstraint(condition=models.Q(('pool__isnull', True), models.Q(('pool__gte', 1), ('pool__lte', 3)), _connector='OR'), name='lead_pool_range'),
                    models.CheckConstraint(condition=models.Q(models.Q(('stage', 'LOST'), _negated=True), models.Q(('lost_reason', ''), _negated=True), _connector='OR'), name='lead_lost_requires_reason'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Note',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('contact_type', models.CharField(choices=[('CALL', 'Call'), ('EMAIL', 'Email'), ('SPOKEN', 'Spoken'), ('NOTE', 'Note')], default='NOTE', max_length=10)),
                ('content', models.TextField()),
                ('author', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notes', to=settings.AUTH_USER_MODEL)),
                ('enquiry', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='notes', to='leads.enquiry')),
                ('lead', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='notes', to='leads.lead')),
            ],
            options={
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(models.Q(('enquiry__isnull', False), ('lead__isnull', True)), models.Q(('enquiry__isnull', True), ('lead__isnull', False)), _connector='OR'), name='note_single_parent'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Activity',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('NOTE', 'Note'), ('CALL', 'Call'), ('EMAIL', 'Email'), ('STAGE_CHANGE', 'Stage Change'), ('FOLLOW_UP', 'Follow Up'), ('ASSIGNMENT', 'Assignment')], max_length=20)),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('client', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='activities', to='leads.client')),
                ('enquiry', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='activities', to='leads.enquiry')),
                ('lead', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='activities', to='leads.lead')),
                ('user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activities', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name_plural': 'Activities',
                'ordering': ['-created_at', '-id'],
            },
        ),
    ]
