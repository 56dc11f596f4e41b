"""
Environment Configuration for the CaneMap records backend

This module provides centralized access to environment variables for:
- MongoDB connection
- Report artifact storage (Google Cloud Storage)
- Reviewer notification routing
- Parallel loading limits
"""

import os

from dotenv import load_dotenv

load_dotenv()

# MongoDB Configuration
MONGO_URI = os.environ.get('MONGO_URI', 'mongodb://localhost:27017/canemap')
SECRET_KEY = os.environ.get('SECRET_KEY', 'canemap-records-secret-key')

# Report artifact storage
GCS_BUCKET_NAME = os.environ.get('GCS_BUCKET_NAME', 'canemap-reports')
REPORT_STORAGE_PREFIX = os.environ.get('REPORT_STORAGE_PREFIX', 'field_reports')

# Reviewer broadcast role
REVIEWER_ROLE = os.environ.get('REVIEWER_ROLE', 'sra')

# Parallel loading
PARALLEL_MAX_WORKERS = int(os.environ.get('PARALLEL_MAX_WORKERS', '8'))
PARALLEL_TIMEOUT_SECONDS = float(os.environ.get('PARALLEL_TIMEOUT_SECONDS', '30'))

# Change stream polling
CHANGE_STREAM_MAX_AWAIT_MS = int(os.environ.get('CHANGE_STREAM_MAX_AWAIT_MS', '1000'))

# Display
CURRENCY_SYMBOL = os.environ.get('CURRENCY_SYMBOL', '₱')

# Collection names
RECORDS_COLLECTION = 'records'
FIELDS_COLLECTION = 'fields'
BOUGHT_ITEMS_COLLECTION = 'bought_items'
VEHICLE_UPDATES_COLLECTION = 'vehicle_updates'
FIELD_REPORTS_COLLECTION = 'field_reports'
NOTIFICATIONS_COLLECTION = 'notifications'
USERS_COLLECTION = 'users'

# Child documents point back at their record through this key
PARENT_RECORD_KEY = 'recordId'
