from decimal import Decimal

from django.db import models
from django.db.models import Q

from core.models import BaseModel, CustomUser
from .ownership import POOL_CHOICES, owner_of, pool_tag


class OwnedRecordMixin:
    """Shared ownership helpers; concrete models name their owner column in OWNER_FIELD."""
    OWNER_FIELD = None

    @property
    def owner_id_value(self):
        return getattr(self, f'{self.OWNER_FIELD}_id')

    @property
    def ownership(self):
        return owner_of(self.owner_id_value, self.pool)

    @property
    def pool_tag(self):
        return pool_tag(self.pool)


class Enquiry(OwnedRecordMixin, BaseModel):
    OWNER_FIELD = 'assigned_agent'

    class Status(models.TextChoices):
        NEW = 'NEW', 'New'
        ASSIGNED = 'ASSIGNED', 'Assigned'
        CONTACTED = 'CONTACTED', 'Contacted'
        CONVERTED_TO_CLIENT = 'CONVERTED_TO_CLIENT', 'Converted to Client'
        SPAM = 'SPAM', 'Spam'
        CLOSED = 'CLOSED', 'Closed'

    class Source(models.TextChoices):
        WEBSITE_FORM = 'WEBSITE_FORM', 'Website Form'
        PHONE_CALL = 'PHONE_CALL', 'Phone Call'
        EMAIL = 'EMAIL', 'Email'
        WHATSAPP = 'WHATSAPP', 'WhatsApp'
        LIVE_CHAT = 'LIVE_CHAT', 'Live Chat'
        PARTNER_REFERRAL = 'PARTNER_REFERRAL', 'Partner Referral'

    SEGMENTS = ['Buyer', 'Investor', 'Renter', 'Other']
    PRIORITIES = ['High', 'Medium', 'Low']
    SNOOZE_OPTIONS = ['Active', '1 Day', '3 Days', '1 Week', '1 Month']

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField()
    phone = models.CharField(max_length=30, blank=True, default='')
    message = models.TextField(blank=True, null=True)
    source = models.CharField(max_length=30, choices=Source.choices, default=Source.WEBSITE_FORM)
    source_url = models.CharField(max_length=500, blank=True, null=True)
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.NEW, db_index=True)

    segment = models.CharField(max_length=20, default='Buyer')
    lead_status = models.CharField(max_length=30, default='New')
    priority = models.CharField(max_length=10, default='Medium')
    next_call_date = models.DateTimeField(blank=True, null=True)
    snooze = models.CharField(max_length=20, default='Active')
    budget = models.CharField(max_length=100, blank=True, null=True)
    country = models.CharField(max_length=100, blank=True, null=True)
    called = models.BooleanField(default=False)
    spoken = models.BooleanField(default=False)
    tags = models.JSONField(default=list, blank=True)

    assigned_agent = models.ForeignKey(
        CustomUser,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='enquiries'
    )
    pool = models.PositiveSmallIntegerField(choices=POOL_CHOICES, null=True, blank=True, db_index=True)
    converted_client = models.OneToOneField(
        'Client',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='source_enquiry'
    )

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'Enquiries'
        constraints = [
            models.CheckConstraint(
                condition=Q(assigned_agent__isnull=True) | Q(pool__isnull=True),
                name='enquiry_single_owner',
            ),
            models.CheckConstraint(
                condition=Q(pool__isnull=True) | Q(pool__gte=1, pool__lte=3),
                name='enquiry_pool_range',
            ),
            models.CheckConstraint(
                condition=(
                    Q(status='CONVERTED_TO_CLIENT', converted_client__isnull=False)
                    | (~Q(status='CONVERTED_TO_CLIENT') & Q(converted_client__isnull=True))
                ),
                name='enquiry_converted_has_client',
            ),
        ]

    def __str__(self):
        return f'{self.full_name} ({self.status})'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()

    def is_converted(self):
        return self.status == self.Status.CONVERTED_TO_CLIENT


class Client(BaseModel):
    class InvestmentPurpose(models.TextChoices):
        RESIDENTIAL = 'RESIDENTIAL', 'Residential'
        INVESTMENT = 'INVESTMENT', 'Investment'
        CITIZENSHIP = 'CITIZENSHIP', 'Citizenship'
        HOLIDAY_HOME = 'HOLIDAY_HOME', 'Holiday Home'
        OTHER = 'OTHER', 'Other'

    DEFAULT_BUDGET_MIN = Decimal('200000')
    DEFAULT_BUDGET_MAX = Decimal('500000')

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField()
    phone = models.CharField(max_length=30, blank=True, default='')
    nationality = models.CharField(max_length=100, default='Not specified')
    country = models.CharField(max_length=100, default='Not specified')
    budget_min = models.DecimalField(max_digits=14, decimal_places=2, default=DEFAULT_BUDGET_MIN)
    budget_max = models.DecimalField(max_digits=14, decimal_places=2, default=DEFAULT_BUDGET_MAX)
    source = models.CharField(max_length=30, default='OTHER')
    investment_purpose = models.CharField(
        max_length=20,
        choices=InvestmentPurpose.choices,
        default=InvestmentPurpose.RESIDENTIAL
    )
    assigned_agent = models.ForeignKey(
        CustomUser,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='clients'
    )
    notes = models.TextField(blank=True, null=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.first_name} {self.last_name}'.strip()


class Lead(OwnedRecordMixin, BaseModel):
    OWNER_FIELD = 'owner'

    class Stage(models.TextChoices):
        NEW_ENQUIRY = 'NEW_ENQUIRY', 'New Enquiry'
        CONTACTED = 'CONTACTED', 'Contacted'
        QUALIFIED = 'QUALIFIED', 'Qualified'
        VIEWING_ARRANGED = 'VIEWING_ARRANGED', 'Viewing Arranged'
        VIEWED = 'VIEWED', 'Viewed'
        OFFER_MADE = 'OFFER_MADE', 'Offer Made'
        NEGOTIATING = 'NEGOTIATING', 'Negotiating'
        WON = 'WON', 'Won'
        LOST = 'LOST', 'Lost'

    class Source(models.TextChoices):
        WEBSITE = 'WEBSITE', 'Website'
        REFERRAL = 'REFERRAL', 'Referral'
        SOCIAL_MEDIA = 'SOCIAL_MEDIA', 'Social Media'
        PARTNER = 'PARTNER', 'Partner'
        OTHER = 'OTHER', 'Other'

    class Currency(models.TextChoices):
        USD = 'USD', 'US Dollar'
        EUR = 'EUR', 'Euro'
        GBP = 'GBP', 'British Pound'
        TRY = 'TRY', 'Turkish Lira'
        AED = 'AED', 'UAE Dirham'

    class BudgetRange(models.TextChoices):
        UNDER_250K = 'UNDER_250K', 'Under 250K'
        FROM_250K_TO_500K = 'FROM_250K_TO_500K', '250K - 500K'
        FROM_500K_TO_1M = 'FROM_500K_TO_1M', '500K - 1M'
        FROM_1M_TO_2M = 'FROM_1M_TO_2M', '1M - 2M'
        OVER_2M = 'OVER_2M', 'Over 2M'

    class PropertyType(models.TextChoices):
        APARTMENT = 'APARTMENT', 'Apartment'
        VILLA = 'VILLA', 'Villa'
        PENTHOUSE = 'PENTHOUSE', 'Penthouse'
        TOWNHOUSE = 'TOWNHOUSE', 'Townhouse'
        COMMERCIAL = 'COMMERCIAL', 'Commercial'
        LAND = 'LAND', 'Land'

    TERMINAL_STAGES = (Stage.WON, Stage.LOST)

    lead_number = models.CharField(max_length=40, unique=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, null=True)
    stage = models.CharField(max_length=20, choices=Stage.choices, default=Stage.NEW_ENQUIRY, db_index=True)
    estimated_value = models.DecimalField(max_digits=14, decimal_places=2, blank=True, null=True)
    currency = models.CharField(max_length=3, choices=Currency.choices, default=Currency.USD)
    budget_range = models.CharField(max_length=20, choices=BudgetRange.choices, blank=True, null=True)
    property_type = models.CharField(max_length=20, choices=PropertyType.choices, blank=True, null=True)
    preferred_location = models.CharField(max_length=255, blank=True, null=True)
    source = models.CharField(max_length=20, choices=Source.choices, default=Source.OTHER)
    source_detail = models.CharField(max_length=500, blank=True, null=True)
    lost_reason = models.TextField(blank=True, default='')
    called = models.BooleanField(default=False)
    spoken = models.BooleanField(default=False)
    tags = models.JSONField(default=list, blank=True)

    client = models.ForeignKey(Client, on_delete=models.CASCADE, related_name='leads')
    enquiry = models.ForeignKey(
        Enquiry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='leads'
    )
    owner = models.ForeignKey(
        CustomUser,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='owned_leads'
    )
    pool = models.PositiveSmallIntegerField(choices=POOL_CHOICES, null=True, blank=True, db_index=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(owner__isnull=True) | Q(pool__isnull=True),
                name='lead_single_owner',
            ),
            models.CheckConstraint(
                condition=Q(pool__isnull=True) | Q(pool__gte=1, pool__lte=3),
                name='lead_pool_range',
            ),
            models.CheckConstraint(
                condition=~Q(stage='LOST') | ~Q(lost_reason=''),
                name='lead_lost_requires_reason',
            ),
        ]

    def __str__(self):
        return f'{self.lead_number} {self.title} ({self.stage})'

    def is_terminal(self):
        return self.stage in self.TERMINAL_STAGES


class Note(BaseModel):
    class ContactType(models.TextChoices):
        CALL = 'CALL', 'Call'
        EMAIL = 'EMAIL', 'Email'
        SPOKEN = 'SPOKEN', 'Spoken'
        NOTE = 'NOTE', 'Note'

    enquiry = models.ForeignKey(Enquiry, on_delete=models.CASCADE, null=True, blank=True, related_name='notes')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, null=True, blank=True, related_name='notes')
    author = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, related_name='notes')
    contact_type = models.CharField(max_length=10, choices=ContactType.choices, default=ContactType.NOTE)
    content = models.TextField()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(enquiry__isnull=False, lead__isnull=True)
                    | Q(enquiry__isnull=True, lead__isnull=False)
                ),
                name='note_single_parent',
            ),
        ]

    def __str__(self):
        return f'[{self.contact_type}] {self.content[:40]}'


class Activity(models.Model):
    class Type(models.TextChoices):
        NOTE = 'NOTE', 'Note'
        CALL = 'CALL', 'Call'
        EMAIL = 'EMAIL', 'Email'
        STAGE_CHANGE = 'STAGE_CHANGE', 'Stage Change'
        FOLLOW_UP = 'FOLLOW_UP', 'Follow Up'
        ASSIGNMENT = 'ASSIGNMENT', 'Assignment'

    type = models.CharField(max_length=20, choices=Type.choices)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    lead = models.ForeignKey(Lead, on_delete=models.CASCADE, null=True, blank=True, related_name='activities')
    enquiry = models.ForeignKey(Enquiry, on_delete=models.CASCADE, null=True, blank=True, related_name='activities')
    client = models.ForeignKey(Client, on_delete=models.CASCADE, null=True, blank=True, related_name='activities')
    user = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, related_name='activities')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name_plural = 'Activities'

    def __str__(self):
        return f'{self.type}: {self.title}'
