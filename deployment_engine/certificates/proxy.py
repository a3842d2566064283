# deployment_engine/certificates/proxy.py
from string import Template

SSL_SERVER_TEMPLATE = Template("""\
# Generated by deployment_engine. HTTP redirects to HTTPS.
server {
    listen 80;
    server_name ${server_name};

    location /.well-known/acme-challenge/ {
        root /var/www/certbot;
    }

    location / {
        return 301 https://$$server_name$$request_uri;
    }
}

server {
    listen 443 ssl http2;
    server_name ${server_name};

    ssl_certificate /etc/nginx/ssl/cert.pem;
    ssl_certificate_key /etc/nginx/ssl/key.pem;
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_ciphers HIGH:!aNULL:!MD5;
    ssl_prefer_server_ciphers on;

    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;

    client_max_body_size 128M;

    location / {
        proxy_pass http://app:80;
        proxy_set_header Host $$host;
        proxy_set_header X-Real-IP $$remote_addr;
        proxy_set_header X-Forwarded-For $$proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $$scheme;
    }

    location /arena {
        proxy_pass http://ta-node:8080;
        proxy_set_header Host $$host;
        proxy_set_header X-Forwarded-Proto $$scheme;
    }

    location /app/websocketkey {
        proxy_pass http://app:6001;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $$http_upgrade;
        proxy_set_header Connection 'upgrade';
        proxy_set_header X-VerifiedViaNginx yes;
    }

    location /nginx-health {
        access_log off;
        return 200 "healthy\\n";
    }
}
""")


def render_ssl_config(server_name: str) -> str:
    return SSL_SERVER_TEMPLATE.substitute(server_name=server_name)
