from django import setup
from django.conf import settings

from tests.django import django_settings

if not settings.configured:
    settings.configure(
        **{
            name: getattr(django_settings, name)
            for name in dir(django_settings)
            if name.isupper()
        }
    )
    setup()
