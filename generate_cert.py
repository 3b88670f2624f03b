from devserver.certs import CERT_FILENAME, KEY_FILENAME, generate_self_signed_cert
from devserver.config import BASE_DIR
from devserver.network import FALLBACK_HOST, select_lan_address


def main():
    """
    Write key.pem and cert.pem next to the server for local HTTPS.

    The LAN address is added to the certificate so phones on the same Wi-Fi
    can open the Network URL after accepting the certificate once.
    """
    hosts = []
    lan_address = select_lan_address()
    if lan_address != FALLBACK_HOST:
        hosts.append(lan_address)

    names = generate_self_signed_cert(BASE_DIR / KEY_FILENAME, BASE_DIR / CERT_FILENAME, hosts)

    print(f"Successfully generated {KEY_FILENAME} and {CERT_FILENAME}")
    print(f"Valid for: {', '.join(names)}")


# Entry point: only runs when this script is executed directly (not imported)
if __name__ == "__main__":
    main()
