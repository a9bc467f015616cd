from django.db import models


class Service(models.Model):
    """A service type with its own ticket numbering sequence."""

    code = models.CharField(max_length=16, primary_key=True)
    name = models.CharField(max_length=100, blank=True)
    # Track last issued number to guarantee sequential tickets per service
    last_token_number = models.IntegerField(default=0)

    class Meta:
        ordering = ['code']

    def __str__(self):
        return self.name or self.code

    @property
    def next_number(self):
        return self.last_token_number + 1
