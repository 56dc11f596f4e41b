from datetime import datetime
from typing import Dict, List, Optional, Any
from bson import ObjectId

from canemap_backend.config.environment import (
    BOUGHT_ITEMS_COLLECTION,
    FIELD_REPORTS_COLLECTION,
    FIELDS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    PARENT_RECORD_KEY,
    RECORDS_COLLECTION,
    USERS_COLLECTION,
    VEHICLE_UPDATES_COLLECTION,
)


class DatabaseSchema:
    """
    Centralized database schema definitions for the records backend.
    Records and their children are schema-less beyond the keys listed here;
    everything else on a record is free-form task payload.
    """

    # ==================== USERS COLLECTION ====================

    @staticmethod
    def get_user_schema() -> Dict[str, Any]:
        """Users are owned by the auth subsystem; only the keys read here are listed."""
        return {
            '_id': ObjectId,
            'email': str,
            'role': str,  # 'handler', 'sra', 'admin'
            'assignedSRA': Optional[str],  # Reviewer assigned to this handler
            'sraOfficer': Optional[str],  # Legacy name of assignedSRA
        }

    @staticmethod
    def get_user_indexes() -> List[Dict[str, Any]]:
        return [
            {'keys': [('role', 1)], 'name': 'role_index'},
        ]

    # ==================== FIELDS COLLECTION ====================

    @staticmethod
    def get_field_schema() -> Dict[str, Any]:
        """
        Schema for fields collection.
        Written by field registration; the records backend only reads it.
        """
        return {
            '_id': ObjectId,
            'userId': str,  # Owner
            'field_name': Optional[str],  # Display name (older clients use fieldName or name)
            'variety': Optional[str],
            'area': Optional[float],  # Hectares
            'barangay': Optional[str],
            'municipality': Optional[str],
            'currentGrowthStage': Optional[str],
            'plantingDate': Optional[datetime],
            'expectedHarvestDate': Optional[datetime],
            'createdAt': datetime,
        }

    @staticmethod
    def get_field_indexes() -> List[Dict[str, Any]]:
        return [
            {'keys': [('userId', 1)], 'name': 'user_fields'},
        ]

    # ==================== RECORDS COLLECTION ====================

    @staticmethod
    def get_record_schema() -> Dict[str, Any]:
        """
        Schema for records collection.
        One logged operation on a field. Any other key is task payload
        (costs, quantities, flags) whose names are chosen by the task form.
        """
        return {
            '_id': ObjectId,
            'userId': str,  # Owner (legacy: user_id, user_uid)
            'fieldId': str,
            'taskType': str,
            'operation': str,
            'status': str,  # Growth stage label
            'recordDate': Optional[datetime],
            'createdAt': datetime,
            'data': Optional[Dict[str, Any]],  # Payload, when not written at top level
        }

    @staticmethod
    def get_record_indexes() -> List[Dict[str, Any]]:
        return [
            # Live subscription ordering; without it the store falls back to client-side sorting
            {'keys': [('userId', 1), ('createdAt', -1)], 'name': 'user_created_desc'},
            {'keys': [('fieldId', 1), ('createdAt', -1)], 'name': 'field_created_desc'},
        ]

    # ==================== RECORD CHILDREN ====================

    @staticmethod
    def get_bought_item_schema() -> Dict[str, Any]:
        return {
            '_id': ObjectId,
            PARENT_RECORD_KEY: str,
            'itemName': str,
            'quantity': Optional[float],
            'unit': Optional[str],
            'pricePerUnit': Optional[float],
            'totalCost': float,  # Legacy alias: total
        }

    @staticmethod
    def get_vehicle_update_schema() -> Dict[str, Any]:
        return {
            '_id': ObjectId,
            PARENT_RECORD_KEY: str,
            'date': Optional[datetime],
            'vehicleType': Optional[str],
            'driverCount': Optional[int],
            'unitsTransported': Optional[int],
            'weight': Optional[float],  # kg
            'fuelCost': Optional[float],
            'laborCost': Optional[float],
            'totalCost': Optional[float],
            'notes': Optional[str],
        }

    @staticmethod
    def get_record_child_indexes() -> List[Dict[str, Any]]:
        return [
            {'keys': [(PARENT_RECORD_KEY, 1)], 'name': 'record_children'},
        ]

    # ==================== FIELD REPORTS COLLECTION ====================

    @staticmethod
    def get_field_report_schema() -> Dict[str, Any]:
        """Metadata of a submitted field report; the PDF itself lives in GCS."""
        return {
            '_id': ObjectId,
            'handlerId': str,
            'userId': str,
            'fieldId': str,
            'fieldName': str,
            'reportType': str,  # 'field_operations'
            'recordCount': int,
            'summary': Dict[str, float],  # totalTaskCost, totalBoughtItemsCost, totalVehicleCost, grandTotal
            'costBreakdown': Dict[str, float],  # fuelCost, laborCost, otherCost, grandTotal
            'artifactPath': str,
            'artifactUrl': str,
            'status': str,  # 'pending_review', 'approved', 'rejected'
            'remarks': Optional[str],
            'reviewedBy': Optional[str],
            'reviewedAt': Optional[datetime],
            'submittedDate': datetime,
            'createdAt': datetime,
        }

    @staticmethod
    def get_field_report_indexes() -> List[Dict[str, Any]]:
        return [
            {'keys': [('handlerId', 1), ('submittedDate', -1)], 'name': 'handler_submitted_desc'},
            {'keys': [('status', 1), ('submittedDate', -1)], 'name': 'status_submitted_desc'},
        ]

    # ==================== NOTIFICATIONS COLLECTION ====================

    @staticmethod
    def get_notification_schema() -> Dict[str, Any]:
        return {
            '_id': ObjectId,
            'role': Optional[str],  # Broadcast target
            'userId': Optional[str],  # Single recipient
            'type': str,  # 'report_submitted', 'report_reviewed', 'records_report'
            'title': str,
            'message': str,
            'relatedIds': Dict[str, str],
            'relatedEntityId': Optional[str],
            'read': bool,
            'status': str,  # Legacy: 'unread' / 'read'
            'timestamp': datetime,
            'createdAt': datetime,
        }

    @staticmethod
    def get_notification_indexes() -> List[Dict[str, Any]]:
        return [
            {'keys': [('role', 1), ('timestamp', -1)], 'sparse': True, 'name': 'role_timestamp_desc'},
            {'keys': [('userId', 1), ('timestamp', -1)], 'sparse': True, 'name': 'user_timestamp_desc'},
        ]


class DatabaseInitializer:
    """
    Database initialization utilities.
    Handles collection creation and index setup.
    """

    def __init__(self, mongo_db):
        """
        Initialize with MongoDB database instance.

        Args:
            mongo_db: PyMongo database instance
        """
        self.db = mongo_db
        self.schema = DatabaseSchema()

    def collection_indexes(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            USERS_COLLECTION: self.schema.get_user_indexes(),
            FIELDS_COLLECTION: self.schema.get_field_indexes(),
            RECORDS_COLLECTION: self.schema.get_record_indexes(),
            BOUGHT_ITEMS_COLLECTION: self.schema.get_record_child_indexes(),
            VEHICLE_UPDATES_COLLECTION: self.schema.get_record_child_indexes(),
            FIELD_REPORTS_COLLECTION: self.schema.get_field_report_indexes(),
            NOTIFICATIONS_COLLECTION: self.schema.get_notification_indexes(),
        }

    def initialize_collections(self):
        """
        Initialize all collections with proper indexes.
        Safe to run multiple times - existing collections and indexes are skipped.
        """
        results = {
            'created': [],
            'existing': [],
            'indexes_created': [],
            'errors': []
        }

        existing_collections = set(self.db.list_collection_names())

        for collection_name, indexes in self.collection_indexes().items():
            try:
                if collection_name in existing_collections:
                    results['existing'].append(collection_name)
                    print(f"✓ Collection '{collection_name}' already exists")
                else:
                    self.db.create_collection(collection_name)
                    results['created'].append(collection_name)
                    print(f"✓ Created collection '{collection_name}'")

                collection = self.db[collection_name]
                existing_indexes = collection.index_information()

                for index_def in indexes:
                    index_name = index_def.get('name')
                    if index_name in existing_indexes:
                        print(f"  ✓ Index '{index_name}' already exists on '{collection_name}'")
                        continue

                    try:
                        created_index_name = collection.create_index(
                            index_def['keys'],
                            unique=index_def.get('unique', False),
                            sparse=index_def.get('sparse', False),
                            name=index_name
                        )
                        results['indexes_created'].append(f"{collection_name}.{created_index_name}")
                        print(f"  ✓ Created index '{created_index_name}' on '{collection_name}'")
                    except Exception as index_error:
                        if 'already exists' in str(index_error).lower():
                            print(f"  ✓ Index '{index_name}' already exists on '{collection_name}'")
                        else:
                            error_msg = f"Failed to create index '{index_name}' on {collection_name}: {str(index_error)}"
                            results['errors'].append(error_msg)
                            print(f"  ✗ {error_msg}")

            except Exception as e:
                error_msg = f"Failed to initialize collection {collection_name}: {str(e)}"
                results['errors'].append(error_msg)
                print(f"✗ {error_msg}")

        return results
