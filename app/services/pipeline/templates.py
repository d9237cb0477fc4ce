"""Safe templates — hand-written, known-valid fallback modules.

When generation cannot produce valid code the pipeline still ships
something: a page + form pair implementing a small CRUD screen over an
in-memory list.  The category is picked by keyword score against the
user's prompt.
"""

from __future__ import annotations

from enum import Enum

from app.services.pipeline.models import FileSet


class TemplateCategory(str, Enum):
    ORDERS = "orders"
    INVENTORY = "inventory"
    CUSTOMERS = "customers"


# Order matters: on a tie the earliest category wins.
CATEGORY_KEYWORDS: dict[TemplateCategory, tuple[str, ...]] = {
    TemplateCategory.ORDERS: (
        "ordine", "ordini", "vendita", "vendite", "fattura", "fatture",
        "ordine cliente", "ordini clienti",
    ),
    TemplateCategory.INVENTORY: (
        "magazzino", "prodotto", "prodotti", "stock", "inventario", "scorta", "merce",
    ),
    TemplateCategory.CUSTOMERS: (
        "cliente", "clienti", "fornitore", "fornitori", "contatto", "contatti", "rubrica",
    ),
}

DEFAULT_CATEGORY = TemplateCategory.ORDERS


def score_prompt(prompt: str) -> dict[TemplateCategory, int]:
    """Count how many of each category's keywords occur in *prompt*."""
    text = (prompt or "").lower()
    return {
        category: sum(1 for kw in keywords if kw in text)
        for category, keywords in CATEGORY_KEYWORDS.items()
    }


def select_template(prompt: str) -> TemplateCategory:
    """Return the category with the strictly highest score.

    Ties and all-zero scores resolve to :data:`DEFAULT_CATEGORY`.
    """
    scores = score_prompt(prompt)
    best = max(scores.values())
    if best == 0:
        return DEFAULT_CATEGORY
    leaders = [c for c, s in scores.items() if s == best]
    if len(leaders) > 1:
        return DEFAULT_CATEGORY
    return leaders[0]


def get_safe_template(prompt: str) -> FileSet:
    """Return a fresh copy of the template file set for *prompt*."""
    return dict(_TEMPLATES[select_template(prompt)])


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

_ORDERS_PAGE = """'use client';

import { useState } from 'react';
import OrderForm, { Order } from '../components/OrderForm';

const STATUS_STYLES: Record<Order['stato'], string> = {
  bozza: 'bg-gray-100 text-gray-800',
  confermato: 'bg-blue-100 text-blue-800',
  spedito: 'bg-green-100 text-green-800',
};

export default function Home() {
  const [orders, setOrders] = useState<Order[]>([]);

  const handleAddOrder = (data: Omit<Order, 'id'>) => {
    setOrders((prev) => [...prev, { ...data, id: Date.now() }]);
  };

  const handleDelete = (id: number) => {
    setOrders((prev) => prev.filter((o) => o.id !== id));
  };

  const totale = orders.reduce((sum, o) => sum + o.importo, 0);

  return (
    <main className="min-h-screen bg-gray-50 p-8">
      <div className="mx-auto max-w-5xl space-y-8">
        <h1 className="text-3xl font-bold text-gray-900">Gestione Ordini</h1>
        <OrderForm onSubmit={handleAddOrder} />
        <section className="rounded-lg bg-white p-6 shadow">
          <div className="mb-4 flex items-center justify-between">
            <h2 className="text-xl font-semibold">Ordini ({orders.length})</h2>
            <span className="text-sm text-gray-600">Totale: € {totale.toFixed(2)}</span>
          </div>
          {orders.length === 0 ? (
            <p className="text-gray-500">Nessun ordine inserito.</p>
          ) : (
            <table className="w-full text-left">
              <thead>
                <tr className="border-b text-sm text-gray-600">
                  <th className="py-2">Cliente</th>
                  <th className="py-2">Data</th>
                  <th className="py-2">Importo</th>
                  <th className="py-2">Stato</th>
                  <th className="py-2"></th>
                </tr>
              </thead>
              <tbody>
                {orders.map((order) => (
                  <tr key={order.id} className="border-b last:border-0">
                    <td className="py-2">{order.cliente}</td>
                    <td className="py-2">{order.data}</td>
                    <td className="py-2">€ {order.importo.toFixed(2)}</td>
                    <td className="py-2">
                      <span className={`rounded px-2 py-1 text-xs ${STATUS_STYLES[order.stato]}`}>
                        {order.stato}
                      </span>
                    </td>
                    <td className="py-2 text-right">
                      <button
                        type="button"
                        onClick={() => handleDelete(order.id)}
                        className="text-sm text-red-600 hover:underline"
                      >
                        Elimina
                      </button>
                    </td>
                  </tr>
                ))}
              </tbody>
            </table>
          )}
        </section>
      </div>
    </main>
  );
}
"""

_ORDERS_FORM = """'use client';

import { useState } from 'react';

export interface Order {
  id: number;
  cliente: string;
  data: string;
  importo: number;
  stato: 'bozza' | 'confermato' | 'spedito';
}

interface OrderFormProps {
  onSubmit: (order: Omit<Order, 'id'>) => void;
}

export default function OrderForm({ onSubmit }: OrderFormProps) {
  const [cliente, setCliente] = useState('');
  const [data, setData] = useState('');
  const [importo, setImporto] = useState('');
  const [stato, setStato] = useState<Order['stato']>('bozza');

  const handleSubmit = (e: React.FormEvent) => {
    e.preventDefault();
    if (!cliente || !data || !importo) {
      return;
    }
    onSubmit({ cliente, data, importo: parseFloat(importo), stato });
    setCliente('');
    setData('');
    setImporto('');
    setStato('bozza');
  };

  return (
    <form onSubmit={handleSubmit} className="grid gap-4 rounded-lg bg-white p-6 shadow md:grid-cols-2">
      <label className="flex flex-col text-sm">
        Cliente
        <input
          value={cliente}
          onChange={(e) => setCliente(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Data
        <input
          type="date"
          value={data}
          onChange={(e) => setData(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Importo (€)
        <input
          type="number"
          step="0.01"
          min="0"
          value={importo}
          onChange={(e) => setImporto(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Stato
        <select
          value={stato}
          onChange={(e) => setStato(e.target.value as Order['stato'])}
          className="mt-1 rounded border px-3 py-2"
        >
          <option value="bozza">Bozza</option>
          <option value="confermato">Confermato</option>
          <option value="spedito">Spedito</option>
        </select>
      </label>
      <button type="submit" className="rounded bg-blue-600 px-4 py-2 text-white hover:bg-blue-700 md:col-span-2">
        Aggiungi ordine
      </button>
    </form>
  );
}
"""

# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

_INVENTORY_PAGE = """'use client';

import { useState } from 'react';
import ProductForm, { Product } from '../components/ProductForm';

const LOW_STOCK = 5;

export default function Home() {
  const [products, setProducts] = useState<Product[]>([]);

  const handleAddProduct = (data: Omit<Product, 'id'>) => {
    setProducts((prev) => [...prev, { ...data, id: Date.now() }]);
  };

  const handleDelete = (id: number) => {
    setProducts((prev) => prev.filter((p) => p.id !== id));
  };

  const valore = products.reduce((sum, p) => sum + p.quantita * p.prezzo, 0);

  return (
    <main className="min-h-screen bg-gray-50 p-8">
      <div className="mx-auto max-w-5xl space-y-8">
        <h1 className="text-3xl font-bold text-gray-900">Gestione Magazzino</h1>
        <ProductForm onSubmit={handleAddProduct} />
        <section className="rounded-lg bg-white p-6 shadow">
          <div className="mb-4 flex items-center justify-between">
            <h2 className="text-xl font-semibold">Prodotti ({products.length})</h2>
            <span className="text-sm text-gray-600">Valore magazzino: € {valore.toFixed(2)}</span>
          </div>
          {products.length === 0 ? (
            <p className="text-gray-500">Nessun prodotto in magazzino.</p>
          ) : (
            <table className="w-full text-left">
              <thead>
                <tr className="border-b text-sm text-gray-600">
                  <th className="py-2">Nome</th>
                  <th className="py-2">Categoria</th>
                  <th className="py-2">Quantità</th>
                  <th className="py-2">Prezzo</th>
                  <th className="py-2"></th>
                </tr>
              </thead>
              <tbody>
                {products.map((product) => (
                  <tr key={product.id} className="border-b last:border-0">
                    <td className="py-2">{product.nome}</td>
                    <td className="py-2">{product.categoria}</td>
                    <td className={product.quantita <= LOW_STOCK ? 'py-2 font-semibold text-red-600' : 'py-2'}>
                      {product.quantita}
                    </td>
                    <td className="py-2">€ {product.prezzo.toFixed(2)}</td>
                    <td className="py-2 text-right">
                      <button
                        type="button"
                        onClick={() => handleDelete(product.id)}
                        className="text-sm text-red-600 hover:underline"
                      >
                        Elimina
                      </button>
                    </td>
                  </tr>
                ))}
              </tbody>
            </table>
          )}
        </section>
      </div>
    </main>
  );
}
"""

_INVENTORY_FORM = """'use client';

import { useState } from 'react';

export interface Product {
  id: number;
  nome: string;
  categoria: string;
  quantita: number;
  prezzo: number;
}

interface ProductFormProps {
  onSubmit: (product: Omit<Product, 'id'>) => void;
}

export default function ProductForm({ onSubmit }: ProductFormProps) {
  const [nome, setNome] = useState('');
  const [categoria, setCategoria] = useState('');
  const [quantita, setQuantita] = useState('');
  const [prezzo, setPrezzo] = useState('');

  const handleSubmit = (e: React.FormEvent) => {
    e.preventDefault();
    if (!nome || !quantita || !prezzo) {
      return;
    }
    onSubmit({
      nome,
      categoria,
      quantita: parseInt(quantita, 10),
      prezzo: parseFloat(prezzo),
    });
    setNome('');
    setCategoria('');
    setQuantita('');
    setPrezzo('');
  };

  return (
    <form onSubmit={handleSubmit} className="grid gap-4 rounded-lg bg-white p-6 shadow md:grid-cols-2">
      <label className="flex flex-col text-sm">
        Nome
        <input
          value={nome}
          onChange={(e) => setNome(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Categoria
        <input
          value={categoria}
          onChange={(e) => setCategoria(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
        />
      </label>
      <label className="flex flex-col text-sm">
        Quantità
        <input
          type="number"
          min="0"
          value={quantita}
          onChange={(e) => setQuantita(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Prezzo (€)
        <input
          type="number"
          step="0.01"
          min="0"
          value={prezzo}
          onChange={(e) => setPrezzo(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <button type="submit" className="rounded bg-blue-600 px-4 py-2 text-white hover:bg-blue-700 md:col-span-2">
        Aggiungi prodotto
      </button>
    </form>
  );
}
"""

# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

_CUSTOMERS_PAGE = """'use client';

import { useState } from 'react';
import CustomerForm, { Customer } from '../components/CustomerForm';

type Filtro = 'tutti' | Customer['tipo'];

export default function Home() {
  const [customers, setCustomers] = useState<Customer[]>([]);
  const [filtro, setFiltro] = useState<Filtro>('tutti');

  const handleAddCustomer = (data: Omit<Customer, 'id'>) => {
    setCustomers((prev) => [...prev, { ...data, id: Date.now() }]);
  };

  const handleDelete = (id: number) => {
    setCustomers((prev) => prev.filter((c) => c.id !== id));
  };

  const visibili = filtro === 'tutti' ? customers : customers.filter((c) => c.tipo === filtro);

  return (
    <main className="min-h-screen bg-gray-50 p-8">
      <div className="mx-auto max-w-5xl space-y-8">
        <h1 className="text-3xl font-bold text-gray-900">Rubrica Clienti e Fornitori</h1>
        <CustomerForm onSubmit={handleAddCustomer} />
        <section className="rounded-lg bg-white p-6 shadow">
          <div className="mb-4 flex items-center justify-between">
            <h2 className="text-xl font-semibold">Contatti ({visibili.length})</h2>
            <select
              value={filtro}
              onChange={(e) => setFiltro(e.target.value as Filtro)}
              className="rounded border px-3 py-1 text-sm"
            >
              <option value="tutti">Tutti</option>
              <option value="cliente">Clienti</option>
              <option value="fornitore">Fornitori</option>
            </select>
          </div>
          {visibili.length === 0 ? (
            <p className="text-gray-500">Nessun contatto trovato.</p>
          ) : (
            <ul className="divide-y">
              {visibili.map((customer) => (
                <li key={customer.id} className="flex items-start justify-between py-3">
                  <div>
                    <p className="font-medium">
                      {customer.nome}
                      <span className="ml-2 rounded bg-gray-100 px-2 py-0.5 text-xs text-gray-700">
                        {customer.tipo}
                      </span>
                    </p>
                    <p className="text-sm text-gray-600">{customer.email} · {customer.telefono}</p>
                    <p className="text-sm text-gray-500">{customer.indirizzo}</p>
                  </div>
                  <button
                    type="button"
                    onClick={() => handleDelete(customer.id)}
                    className="text-sm text-red-600 hover:underline"
                  >
                    Elimina
                  </button>
                </li>
              ))}
            </ul>
          )}
        </section>
      </div>
    </main>
  );
}
"""

_CUSTOMERS_FORM = """'use client';

import { useState } from 'react';

export interface Customer {
  id: number;
  nome: string;
  email: string;
  telefono: string;
  indirizzo: string;
  tipo: 'cliente' | 'fornitore';
}

interface CustomerFormProps {
  onSubmit: (customer: Omit<Customer, 'id'>) => void;
}

export default function CustomerForm({ onSubmit }: CustomerFormProps) {
  const [nome, setNome] = useState('');
  const [email, setEmail] = useState('');
  const [telefono, setTelefono] = useState('');
  const [indirizzo, setIndirizzo] = useState('');
  const [tipo, setTipo] = useState<Customer['tipo']>('cliente');

  const handleSubmit = (e: React.FormEvent) => {
    e.preventDefault();
    if (!nome || !email) {
      return;
    }
    onSubmit({ nome, email, telefono, indirizzo, tipo });
    setNome('');
    setEmail('');
    setTelefono('');
    setIndirizzo('');
    setTipo('cliente');
  };

  return (
    <form onSubmit={handleSubmit} className="grid gap-4 rounded-lg bg-white p-6 shadow md:grid-cols-2">
      <label className="flex flex-col text-sm">
        Nome
        <input
          value={nome}
          onChange={(e) => setNome(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Email
        <input
          type="email"
          value={email}
          onChange={(e) => setEmail(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
          required
        />
      </label>
      <label className="flex flex-col text-sm">
        Telefono
        <input
          value={telefono}
          onChange={(e) => setTelefono(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
        />
      </label>
      <label className="flex flex-col text-sm">
        Indirizzo
        <input
          value={indirizzo}
          onChange={(e) => setIndirizzo(e.target.value)}
          className="mt-1 rounded border px-3 py-2"
        />
      </label>
      <label className="flex flex-col text-sm">
        Tipo
        <select
          value={tipo}
          onChange={(e) => setTipo(e.target.value as Customer['tipo'])}
          className="mt-1 rounded border px-3 py-2"
        >
          <option value="cliente">Cliente</option>
          <option value="fornitore">Fornitore</option>
        </select>
      </label>
      <button type="submit" className="rounded bg-blue-600 px-4 py-2 text-white hover:bg-blue-700 md:col-span-2">
        Aggiungi contatto
      </button>
    </form>
  );
}
"""

_TEMPLATES: dict[TemplateCategory, FileSet] = {
    TemplateCategory.ORDERS: {
        "app/page.tsx": _ORDERS_PAGE,
        "components/OrderForm.tsx": _ORDERS_FORM,
    },
    TemplateCategory.INVENTORY: {
        "app/page.tsx": _INVENTORY_PAGE,
        "components/ProductForm.tsx": _INVENTORY_FORM,
    },
    TemplateCategory.CUSTOMERS: {
        "app/page.tsx": _CUSTOMERS_PAGE,
        "components/CustomerForm.tsx": _CUSTOMERS_FORM,
    },
}
