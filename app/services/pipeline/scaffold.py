"""Static Next.js project scaffold merged under every generated module."""

from __future__ import annotations

import json
import logging

from app.services.pipeline.models import FileSet

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"

_PACKAGE_MANIFEST: dict = {
    "name": "erp-generated-app",
    "version": "0.1.0",
    "private": True,
    "scripts": {
        "dev": "next dev",
        "build": "next build",
        "start": "next start",
        "lint": "next lint",
    },
    "dependencies": {
        "next": "^15.1.9",
        "react": "^19.0.0",
        "react-dom": "^19.0.0",
        "@supabase/supabase-js": "^2.89.0",
        "framer-motion": "^12.23.26",
    },
    "devDependencies": {
        "@tailwindcss/postcss": "^4",
        "@types/node": "^20",
        "@types/react": "^19",
        "@types/react-dom": "^19",
        "eslint": "^9",
        "eslint-config-next": "^15.1.9",
        "tailwindcss": "^4",
        "typescript": "^5",
    },
}

_TSCONFIG: dict = {
    "compilerOptions": {
        "target": "ES2017",
        "lib": ["dom", "dom.iterable", "esnext"],
        "allowJs": True,
        "skipLibCheck": True,
        "strict": True,
        "noEmit": True,
        "esModuleInterop": True,
        "module": "esnext",
        "moduleResolution": "bundler",
        "resolveJsonModule": True,
        "isolatedModules": True,
        "jsx": "preserve",
        "incremental": True,
        "plugins": [{"name": "next"}],
        "paths": {"@/*": ["./*"]},
    },
    "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
    "exclude": ["node_modules"],
}

_NEXT_CONFIG = """/** @type {import('next').NextConfig} */
const nextConfig = {
  reactStrictMode: true,
};

module.exports = nextConfig;
"""

_TAILWIND_CONFIG = """import type { Config } from 'tailwindcss';

const config: Config = {
  content: ['./app/**/*.{js,ts,jsx,tsx,mdx}', './components/**/*.{js,ts,jsx,tsx,mdx}'],
  theme: { extend: {} },
  plugins: [],
};

export default config;
"""

_POSTCSS_CONFIG = """module.exports = {
  plugins: {
    '@tailwindcss/postcss': {},
  },
};
"""

_GITIGNORE = """node_modules
.next
out
.env*.local
.vercel
next-env.d.ts
"""

_README = """# ERP generated app

Generated Next.js module.  Run `npm install` then `npm run dev`.
"""

_GLOBALS_CSS = """@import "tailwindcss";
"""

_LAYOUT = """import './globals.css';

export const metadata = {
  title: 'ERP App',
  description: 'Modulo ERP generato',
};

export default function RootLayout({ children }: { children: React.ReactNode }) {
  return (
    <html lang="it">
      <body className="antialiased">{children}</body>
    </html>
  );
}
"""


def base_files() -> FileSet:
    """Return a fresh copy of the scaffold file set."""
    return {
        PACKAGE_JSON: json.dumps(_PACKAGE_MANIFEST, indent=2),
        "tsconfig.json": json.dumps(_TSCONFIG, indent=2),
        "next.config.js": _NEXT_CONFIG,
        "tailwind.config.ts": _TAILWIND_CONFIG,
        "postcss.config.js": _POSTCSS_CONFIG,
        ".gitignore": _GITIGNORE,
        "README.md": _README,
        "app/globals.css": _GLOBALS_CSS,
        "app/layout.tsx": _LAYOUT,
    }


def merge_with_scaffold(files: FileSet) -> FileSet:
    """Scaffold first, generated files on top — generated paths win."""
    return {**base_files(), **files}


def merge_package_update(update: dict, manifest: str | None = None) -> str:
    """Merge ``dependencies`` / ``devDependencies`` from *update* into a
    package manifest (the scaffold's when *manifest* is ``None``)."""
    try:
        current = json.loads(manifest) if manifest else dict(_PACKAGE_MANIFEST)
    except json.JSONDecodeError:
        logger.warning("Existing package.json is not valid JSON; starting from scaffold")
        current = dict(_PACKAGE_MANIFEST)
    for section in ("dependencies", "devDependencies"):
        extra = update.get(section)
        if isinstance(extra, dict):
            current[section] = {**current.get(section, {}), **extra}
    return json.dumps(current, indent=2)
