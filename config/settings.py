import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


PORT = int(os.getenv('PORT', '5000'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# lifecycle policy
BLISS_TTL_SECONDS = int(os.getenv('BLISS_TTL_SECONDS', str(60 * 60)))
BLISS_EPOCH_OFFSET = int(os.getenv('BLISS_EPOCH_OFFSET', '880831800'))
BLISS_REQUEST_URL_TTL = 60 * 5
BLISS_RESPONSE_URL_TTL = 60 * 60
BLISS_TRANSMUX_ENABLED = _flag('BLISS_TRANSMUX_ENABLED', 'true')
BLISS_CANCEL_DELETES_VIDEO = _flag('BLISS_CANCEL_DELETES_VIDEO')

# aws
AWS_REGION = os.getenv('AWS_REGION', 'us-east-2')
AWS_ACCESS_KEY_ID = os.getenv('AWS_ACCESS_KEY_ID', '')
AWS_SECRET_ACCESS_KEY = os.getenv('AWS_SECRET_ACCESS_KEY', '')

# blob storage
STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'local')
LOCAL_STORAGE_PATH = os.getenv('LOCAL_STORAGE_PATH', os.path.join(os.getcwd(), '.storage'))
LOCAL_PUBLIC_URL = os.getenv('LOCAL_PUBLIC_URL', f'http://localhost:{PORT}/media')
LOCAL_SIGNING_SECRET = os.getenv('LOCAL_SIGNING_SECRET', 'local-dev-secret')
S3_ENDPOINT = os.getenv('S3_ENDPOINT', '') or f'https://s3.{AWS_REGION}.amazonaws.com'
BLISS_REQUEST_BUCKET = os.getenv('BLISS_REQUEST_BUCKET', 'bliss-request')
BLISS_RESPONSE_BUCKET = os.getenv('BLISS_RESPONSE_BUCKET', 'bliss-response')
BLISS_RESPONSE_OUTPUT_BUCKET = os.getenv('BLISS_RESPONSE_OUTPUT_BUCKET', 'bliss-response-output')

# cdn
BLISS_RESPONSE_CDN_URL = os.getenv('BLISS_RESPONSE_CDN_URL', '')
CLOUDFRONT_ACCESS_KEY_ID = os.getenv('CLOUDFRONT_ACCESS_KEY_ID', '')
CLOUDFRONT_PRIVATE_KEY_PATH = os.getenv('CLOUDFRONT_PRIVATE_KEY_PATH', '')

# metadata
METADATA_BACKEND = os.getenv('METADATA_BACKEND', 'db')
DATABASE_URL = os.getenv('DATABASE_URL', f"sqlite://{os.path.join(os.getcwd(), 'bliss.sqlite3')}")
DYNAMODB_ENDPOINT = os.getenv('DYNAMODB_ENDPOINT', '') or f'https://dynamodb.{AWS_REGION}.amazonaws.com'
BLISS_REQUEST_DB_TABLE_NAME = os.getenv('BLISS_REQUEST_DB_TABLE_NAME', 'bliss_requests')
BLISS_RESPONSE_DB_TABLE_NAME = os.getenv('BLISS_RESPONSE_DB_TABLE_NAME', 'bliss_responses')

# notifications
NOTIFICATION_BACKEND = os.getenv('NOTIFICATION_BACKEND', 'log')
SNS_ENDPOINT = os.getenv('SNS_ENDPOINT', '') or f'https://sns.{AWS_REGION}.amazonaws.com'
BLISS_REQUEST_SNS_ARN = os.getenv('BLISS_REQUEST_SNS_ARN', 'bliss-request')
BLISS_RESPONSE_SNS_ARN = os.getenv('BLISS_RESPONSE_SNS_ARN', 'bliss-response')
BLISS_REQUEST_CANCEL_SNS_ARN = os.getenv('BLISS_REQUEST_CANCEL_SNS_ARN', 'bliss-request-cancel')

# transcoder
TRANSCODER_URL = os.getenv('TRANSCODER_URL', '')
