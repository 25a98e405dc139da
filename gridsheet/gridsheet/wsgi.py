"""
WSGI config for gridsheet project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gridsheet.settings')

application = get_wsgi_application()
