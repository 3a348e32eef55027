from .qr_encoder import encode_qr_data_url

__all__ = ['encode_qr_data_url']
