"""
Lambda functions for the daily expiry digest.
lambda_handler is triggered by EventBridge once a day (cron(0 6 * * ? *));
test_handler is exposed over API Gateway to send a test digest on demand.
"""

import json
import os
import logging
from datetime import datetime
from typing import Dict, Any, List
from zoneinfo import ZoneInfo
import boto3

from expiry_notifier.classifier import ExpiryClassifier
from expiry_notifier.digest import DigestComposer
from expiry_notifier.errors import TransportFatal
from expiry_notifier.mailer import SesMailer
from expiry_notifier.models import Product

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Initialize AWS clients
dynamodb = boto3.resource('dynamodb')
products_table = dynamodb.Table(os.environ.get('DYNAMODB_TABLE_PRODUCTS', 'products'))
ses = boto3.client('ses', region_name=os.environ.get('AWS_REGION', 'us-east-1'))

# Configuration
SES_FROM_EMAIL = os.environ.get('SES_FROM_EMAIL', '')
DIGEST_TO_EMAIL = os.environ.get('DIGEST_TO_EMAIL', '')
DIGEST_TIMEZONE = os.environ.get('DIGEST_TIMEZONE', 'Europe/Paris')
DIGEST_SENDER_NAME = os.environ.get('DIGEST_SENDER_NAME', 'DLC Watcher')
APP_URL = os.environ.get('APP_URL', 'https://dlc-watcher.vercel.app')


def fetch_products() -> List[Product]:
    """Scan the whole products table."""
    items = []
    response = products_table.scan()
    items.extend(response.get('Items', []))
    while 'LastEvaluatedKey' in response:
        response = products_table.scan(ExclusiveStartKey=response['LastEvaluatedKey'])
        items.extend(response.get('Items', []))
    logger.info(f"Fetched {len(items)} products")
    return [Product.from_dict(item) for item in items]


def build_composer() -> DigestComposer:
    return DigestComposer(
        ExpiryClassifier(ZoneInfo(DIGEST_TIMEZONE)),
        SesMailer(client=ses),
        from_email=SES_FROM_EMAIL,
        to_email=DIGEST_TO_EMAIL,
        sender_name=DIGEST_SENDER_NAME,
        app_url=APP_URL,
    )


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Send the daily digest of expired and soon-expiring products.
    Triggered by EventBridge schedule. Mail failures are re-raised so the
    invocation is reported as failed.
    """
    logger.info("Starting expiring products check...")
    today = datetime.now(ZoneInfo(DIGEST_TIMEZONE)).date()

    try:
        result = build_composer().run(fetch_products(), today)
    except TransportFatal as e:
        logger.error(f"Error while checking products: {e}", exc_info=True)
        raise

    return {
        'success': result.success,
        'productsCount': result.products_count,
        'message': result.message
    }


def test_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Send a short [TEST] digest. Invoked over HTTP."""
    logger.info("Sending test digest...")
    try:
        today = datetime.now(ZoneInfo(DIGEST_TIMEZONE)).date()
        result = build_composer().run(fetch_products(), today, test=True)
        message = 'Test email sent' if result.products_count else 'No expiring products found'
        return {
            'statusCode': 200,
            'body': json.dumps({
                'success': True,
                'message': message,
                'productsCount': result.products_count
            })
        }
    except Exception as e:
        logger.error(f"Error in test digest: {e}", exc_info=True)
        return {
            'statusCode': 500,
            'body': json.dumps({'success': False, 'error': str(e)})
        }
