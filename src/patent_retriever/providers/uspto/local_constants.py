USPTO_PROVIDER_ID = "uspto"

USPTO_API_KEY_HEADER = "X-API-KEY"
PDF_MIME_TYPE = "PDF"
