OPS_PROVIDER_ID = "ops"

OPS_IMAGES_PATH = "/published-data/publication/docdb/images"
OPS_RANGE_HEADER = "X-OPS-Range"

# Instance descriptions as reported by the images inquiry.
FULL_DOCUMENT_DESC = "FullDocument"
INSTANCE_TAG = "document-instance"
