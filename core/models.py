import logging

from django.contrib.auth.models import AbstractUser
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models.signals import pre_save
from django.dispatch import receiver

logger = logging.getLogger('crm')


class BaseModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    version = models.PositiveIntegerField(default=1)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk:
            current = self.__class__.objects.filter(pk=self.pk).values_list('version', flat=True).first()
            if current is not None:
                self.version = current + 1
        super().save(*args, **kwargs)


@receiver(pre_save)
def log_model_changes(sender, instance, **kwargs):
    if not issubclass(sender, BaseModel):
        return

    if instance.pk:
        old_instance = sender.objects.filter(pk=instance.pk).first()
        if old_instance is None:
            return
        changes = []
        for field in instance._meta.fields:
            field_name = field.attname
            old_value = getattr(old_instance, field_name)
            new_value = getattr(instance, field_name)
            if field_name in ('updated_at', 'version'):
                continue
            if old_value != new_value:
                changes.append(f'{field.name} changed from {old_value} to {new_value}')
        if changes:
            logger.info(f'{sender.__name__} {instance.pk} changes: {"; ".join(changes)}')


class CustomUser(AbstractUser):
    class Role(models.TextChoices):
        SUPER_ADMIN = 'SUPER_ADMIN', 'Super Admin'
        ADMIN = 'ADMIN', 'Admin'
        SALES_MANAGER = 'SALES_MANAGER', 'Senior Consultant'
        SALES_AGENT = 'SALES_AGENT', 'Consultant'
        VIEWER = 'VIEWER', 'Junior Consultant'

    class Office(models.TextChoices):
        UAE = 'UAE', 'UAE Office'
        TURKEY = 'TURKEY', 'Turkey Office'
        UK = 'UK', 'UK Office'
        MALAYSIA = 'MALAYSIA', 'Malaysia Office'
        BANGLADESH = 'BANGLADESH', 'Bangladesh Office'
        HEAD_OFFICE = 'HEAD_OFFICE', 'Head Office'

    role = models.CharField(max_length=20, choices=Role.choices, default=Role.SALES_AGENT)
    office = models.CharField(max_length=20, choices=Office.choices, default=Office.HEAD_OFFICE)
    phone_number = models.CharField(max_length=30, blank=True, null=True)

    def __str__(self):
        return self.get_full_name() or self.username

    def is_super_admin(self):
        return self.role == self.Role.SUPER_ADMIN

    def is_admin(self):
        return self.role in (self.Role.SUPER_ADMIN, self.Role.ADMIN)

    def is_manager(self):
        return self.role in (self.Role.SUPER_ADMIN, self.Role.ADMIN, self.Role.SALES_MANAGER)

    def is_sales_agent(self):
        return self.role == self.Role.SALES_AGENT

    def is_viewer(self):
        return self.role == self.Role.VIEWER

    def can_write(self):
        return self.role != self.Role.VIEWER


class Notification(BaseModel):
    class Type(models.TextChoices):
        LEAD_ASSIGNED = 'LEAD_ASSIGNED', 'Lead Assigned'
        DEAL_STAGE_CHANGED = 'DEAL_STAGE_CHANGED', 'Stage Changed'
        SYSTEM_ALERT = 'SYSTEM_ALERT', 'System Alert'

    user = models.ForeignKey(CustomUser, on_delete=models.CASCADE, related_name='notifications')
    type = models.CharField(max_length=30, choices=Type.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    link = models.CharField(max_length=500, blank=True, null=True)
    is_read = models.BooleanField(default=False)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.title} -> {self.user}'


class AuditLog(models.Model):
    class Action(models.TextChoices):
        CREATE = 'CREATE', 'Create'
        UPDATE = 'UPDATE', 'Update'
        DELETE = 'DELETE', 'Delete'
        ASSIGN = 'ASSIGN', 'Assign'
        STAGE_CHANGE = 'STAGE_CHANGE', 'Stage Change'
        CONVERT = 'CONVERT', 'Convert'

    action = models.CharField(max_length=20, choices=Action.choices)
    entity_type = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=50)
    changes = models.JSONField(blank=True, null=True, encoder=DjangoJSONEncoder)
    user = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f'{self.action} {self.entity_type} {self.entity_id}'
