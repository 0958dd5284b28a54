from tortoise import fields, models


class WarmupQueueEntry(models.Model):
    """
    A URL waiting to be warmed.

    There is no status column: a NULL ``processing_started_at`` means the row
    was never leased, an old one means the lease expired, and finished rows
    are deleted.
    """
    id = fields.BigIntField(pk=True)
    url = fields.CharField(max_length=2048)
    entity_id = fields.BigIntField()
    entity_type = fields.CharField(max_length=64)
    # NULL means the public/anonymous variant of the page
    customer_group = fields.CharField(max_length=64, null=True)
    priority = fields.IntField(default=0)
    processing_started_at = fields.DatetimeField(null=True)

    class Meta:
        table = "cache_warmup_queue"
        indexes = (("priority", "id"), ("processing_started_at",))
